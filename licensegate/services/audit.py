"""
Audit log for ledger-affecting events.

Events are append-only.  Each ``record`` call writes in its own session,
after the ledger mutation it documents has committed.  A failed write never
undoes or fails that mutation: it is logged, kept as an
``AuditWriteFailure`` on ``AuditLog.health``, and reported by the health
endpoint as a degradation.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Callable

from sqlalchemy import ColumnElement, case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from licensegate.contracts.ledger_types import DenialReason, EventType
from licensegate.db.database import AsyncSessionLocal
from licensegate.db.models import Event
from licensegate.errors import AuditWriteFailure

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]


@dataclass
class AuditHealth:
    """Running record of audit write failures since process start."""
    failures: int = 0
    last_failure_at: datetime | None = None
    last_error: AuditWriteFailure | None = None

    @property
    def degraded(self) -> bool:
        return self.failures > 0

    def record_failure(self, error: AuditWriteFailure) -> None:
        self.failures += 1
        self.last_failure_at = datetime.now(timezone.utc)
        self.last_error = error

    def as_dict(self) -> dict[str, object]:
        return {
            "failures": self.failures,
            "last_failure_at": self.last_failure_at.isoformat() if self.last_failure_at else None,
            "last_error": self.last_error.reason if self.last_error else None,
        }


class AuditLog:
    """Append-only sink for entitlement events."""

    def __init__(self, session_factory: SessionFactory | None = None):
        self._session_factory = session_factory or AsyncSessionLocal
        self.health = AuditHealth()

    async def record(
        self,
        store_token: str,
        event_type: EventType,
        *,
        count_before: int = 0,
        count_after: int = 0,
        allowed: bool = True,
        denial_reason: DenialReason | None = None,
        license_key_hash: str | None = None,
        product_id: str | None = None,
        source_address: str | None = None,
    ) -> bool:
        """
        Append one event.

        Returns:
            True if the event was written, False if the write failed
        """
        event = Event(
            store_token=store_token,
            event_type=event_type.value,
            count_before=count_before,
            count_after=count_after,
            allowed=allowed,
            denial_reason=denial_reason.value if denial_reason else None,
            license_key_hash=license_key_hash,
            product_id=product_id,
            ip_address=source_address,
        )
        try:
            async with self._session_factory() as session:
                session.add(event)
                await session.commit()
        except Exception as e:
            failure = AuditWriteFailure(f"{event_type.value} event not recorded: {type(e).__name__}")
            self.health.record_failure(failure)
            logger.exception(
                f"Audit write failed for store {store_token[:8]}... "
                f"({event_type.value}): {e}"
            )
            return False
        return True


_audit_log: AuditLog | None = None


def get_audit_log() -> AuditLog:
    """Return the process-wide audit log."""
    global _audit_log
    if _audit_log is None:
        _audit_log = AuditLog()
    return _audit_log


def reset_audit_log() -> None:
    global _audit_log
    _audit_log = None


# =============================================================================
# Aggregate reporting
# =============================================================================

def start_of_day(now: datetime | None = None) -> datetime:
    """UTC midnight of the day containing ``now``."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


async def count_events(
    db: AsyncSession,
    since: datetime,
    allowed: bool | None = None,
) -> int:
    """Number of events since ``since``, optionally filtered by outcome."""
    stmt = select(func.count(Event.id)).where(Event.created_at >= since)
    if allowed is not None:
        stmt = stmt.where(Event.allowed.is_(allowed))
    result = await db.execute(stmt)
    return result.scalar() or 0


@dataclass(frozen=True)
class DailyUsage:
    day: date
    total: int
    allowed: int
    denied: int


def utc_day(column: ColumnElement[datetime], dialect_name: str) -> ColumnElement[date]:
    """Calendar day of ``column`` in UTC.

    PostgreSQL's ``date()`` on a ``timestamptz`` uses the session time zone,
    so the value is shifted to UTC first.  SQLite stores UTC already.
    """
    if dialect_name == "postgresql":
        return func.date(func.timezone("UTC", column))
    return func.date(column)


async def daily_usage(
    db: AsyncSession,
    days: int = 7,
    now: datetime | None = None,
) -> list[DailyUsage]:
    """
    Event counts per UTC day and outcome over the trailing ``days`` days.

    Days without events are omitted.  Ordered oldest first.
    """
    since = start_of_day(now) - timedelta(days=days - 1)
    day_col = utc_day(Event.created_at, db.get_bind().dialect.name).label("day")
    stmt = (
        select(
            day_col,
            func.count(Event.id),
            func.sum(case((Event.allowed.is_(True), 1), else_=0)),
        )
        .where(Event.created_at >= since)
        .group_by(day_col)
        .order_by(day_col)
    )
    rows = (await db.execute(stmt)).all()
    usage: list[DailyUsage] = []
    for day, total, allowed_count in rows:
        if isinstance(day, str):
            day = date.fromisoformat(day)
        allowed_count = int(allowed_count or 0)
        usage.append(DailyUsage(day=day, total=total, allowed=allowed_count, denied=total - allowed_count))
    return usage
