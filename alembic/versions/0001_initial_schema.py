"""Initial schema: stores and entitlement events.

Revision ID: 0001
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates:
  - stores (one row per connected store, with its authoritative count)
  - entitlement_events (append-only audit trail)

Fresh install:
  alembic upgrade head
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ── Stores ────────────────────────────────────────────────────────────
    op.create_table(
        "stores",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("store_token", sa.String(64), nullable=False),
        sa.Column("secret_material", sa.String(64), nullable=False),
        sa.Column("license_id", sa.Integer(), nullable=False),
        sa.Column("store_url", sa.String(500), nullable=False),
        sa.Column("store_name", sa.String(255), nullable=True),
        sa.Column("plan", sa.String(50), nullable=False, server_default="solo"),
        sa.Column("license_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("license_limit", sa.Integer(), nullable=True),
        sa.Column("is_connected", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("over_limit", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("over_limit_amount", sa.Integer(), nullable=True),
        sa.Column("connected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.CheckConstraint("license_count >= 0", name="ck_stores_count_non_negative"),
        sa.CheckConstraint(
            "license_limit IS NULL OR license_limit > 0",
            name="ck_stores_limit_positive",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_stores_store_token", "stores", ["store_token"], unique=True)
    op.create_index("ix_stores_license_id", "stores", ["license_id"])
    op.create_index("ix_stores_plan", "stores", ["plan"])
    op.create_index("ix_stores_is_connected", "stores", ["is_connected"])
    op.create_index("ix_stores_last_seen_at", "stores", ["last_seen_at"])

    # ── Entitlement events ────────────────────────────────────────────────
    op.create_table(
        "entitlement_events",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("store_token", sa.String(64), nullable=False),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("license_key_hash", sa.String(64), nullable=True),
        sa.Column("product_id", sa.String(100), nullable=True),
        sa.Column("count_before", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("count_after", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("allowed", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("denial_reason", sa.String(255), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_entitlement_events_store_token", "entitlement_events", ["store_token"])
    op.create_index("ix_entitlement_events_event_type", "entitlement_events", ["event_type"])
    op.create_index("ix_entitlement_events_allowed", "entitlement_events", ["allowed"])
    op.create_index("ix_entitlement_events_created_at", "entitlement_events", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_entitlement_events_created_at", table_name="entitlement_events")
    op.drop_index("ix_entitlement_events_allowed", table_name="entitlement_events")
    op.drop_index("ix_entitlement_events_event_type", table_name="entitlement_events")
    op.drop_index("ix_entitlement_events_store_token", table_name="entitlement_events")
    op.drop_table("entitlement_events")

    op.drop_index("ix_stores_last_seen_at", table_name="stores")
    op.drop_index("ix_stores_is_connected", table_name="stores")
    op.drop_index("ix_stores_plan", table_name="stores")
    op.drop_index("ix_stores_license_id", table_name="stores")
    op.drop_index("ix_stores_store_token", table_name="stores")
    op.drop_table("stores")
