"""
SQLAlchemy ORM models for LicenseGate.

Tables:
- stores: one row per connected customer instance, with its quota position
- entitlement_events: append-only audit trail of ledger-affecting actions
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from licensegate.db.database import Base


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


class Store(Base):
    """
    A connected customer instance and its authoritative license count.

    ``store_token`` is derived from the customer's license key and never
    changes.  ``secret_material`` is the HMAC key used to verify signed
    requests; it is issued to the client once at connection time and never
    returned again.  Rows are never deleted: disconnection is a flag.
    """
    __tablename__ = "stores"
    __table_args__ = (
        CheckConstraint("license_count >= 0", name="ck_stores_count_non_negative"),
        CheckConstraint(
            "license_limit IS NULL OR license_limit > 0",
            name="ck_stores_limit_positive",
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=generate_uuid,
    )

    store_token: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        index=True,
    )
    secret_material: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    # External license reference from the subscription system
    license_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
    )
    store_url: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )
    store_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    # Entitlement
    plan: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="solo",
        index=True,
    )
    license_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    license_limit: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,  # NULL = unlimited
    )

    # State
    is_connected: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        index=True,
    )
    over_limit: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    over_limit_amount: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )

    # Timestamps
    connected_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    last_seen_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
    )

    @property
    def is_unlimited(self) -> bool:
        return self.license_limit is None

    def __repr__(self) -> str:
        limit = "unlimited" if self.license_limit is None else self.license_limit
        return f"<Store {self.store_token[:8]} plan={self.plan} {self.license_count}/{limit}>"


class Event(Base):
    """
    Audit record of one ledger-affecting action.

    ``store_token`` is a plain reference, not a foreign key: events outlive
    any particular store state and are written even for unknown tokens.
    Rows are immutable once written.
    """
    __tablename__ = "entitlement_events"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=generate_uuid,
    )
    store_token: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )
    event_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
    )

    license_key_hash: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )
    product_id: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    # Ledger transition (reported vs server count for sync)
    count_before: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    count_after: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    allowed: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        index=True,
    )
    denial_reason: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    ip_address: Mapped[str | None] = mapped_column(
        String(45),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        outcome = "allowed" if self.allowed else f"denied:{self.denial_reason}"
        return f"<Event {self.event_type} {self.store_token[:8]} {outcome}>"
