"""
Service health snapshot.

Combines database reachability, store and event aggregates, and the audit
log's failure record into one report for the public health endpoint.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from licensegate.config import settings
from licensegate.db.models import Store
from licensegate.services.audit import AuditLog, count_events, start_of_day

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoreTotals:
    connected: int
    total: int
    at_limit: int


async def store_totals(db: AsyncSession) -> StoreTotals:
    """Connected, total, and at-or-over-limit store counts."""
    total = (await db.execute(select(func.count(Store.id)))).scalar() or 0
    connected = (
        await db.execute(select(func.count(Store.id)).where(Store.is_connected.is_(True)))
    ).scalar() or 0
    at_limit = (
        await db.execute(
            select(func.count(Store.id)).where(
                Store.license_limit.is_not(None),
                Store.license_count >= Store.license_limit,
            )
        )
    ).scalar() or 0
    return StoreTotals(connected=connected, total=total, at_limit=at_limit)


async def health_report(db: AsyncSession, audit: AuditLog) -> tuple[dict[str, object], bool]:
    """
    Build the health payload.

    Returns:
        (payload, database_ok). ``status`` is ``unhealthy`` when the database
        cannot be queried, ``degraded`` after any audit write failure, else
        ``healthy``.
    """
    now = datetime.now(timezone.utc)
    report: dict[str, object] = {
        "version": settings.app_version,
        "audit": audit.health.as_dict(),
        "timestamp": now.isoformat(),
    }

    try:
        totals = await store_totals(db)
        today = start_of_day(now)
        events_today = await count_events(db, today)
        denials_today = await count_events(db, today, allowed=False)
    except SQLAlchemyError as e:
        logger.error(f"Health check database query failed: {e}")
        await db.rollback()
        report.update(status="unhealthy", database="error")
        return report, False

    report.update(
        status="degraded" if audit.health.degraded else "healthy",
        database="connected",
        connected_stores=totals.connected,
        total_stores=totals.total,
        events_today=events_today,
        stores_at_limit=totals.at_limit,
        denials_today=denials_today,
    )
    return report, True
