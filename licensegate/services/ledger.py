"""
Quota ledger: the authoritative license count per store.

Every count change is a single conditional UPDATE evaluated by the database,
so concurrent requests for the same store serialize on the row (and across
service instances) without in-process locking:

- reserve:  ``count = count + 1 WHERE connected AND (limit IS NULL OR count < limit)``
- release:  ``count = count - 1 WHERE count > 0``
- set_plan: over-limit flag computed from the row's count in the same statement

Each operation commits its mutation, then appends an audit event, then emits
a domain notification.  Storage errors roll the transaction back and surface
as ``PersistenceFailure`` with no partial change applied.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from licensegate.auth.credentials import StoreCredentials, issue_credentials
from licensegate.config import settings
from licensegate.contracts.ledger_types import (
    DenialReason,
    EventType,
    LedgerFailure,
    LedgerSnapshot,
    PlanChangeResult,
    PlanUpdated,
    Released,
    ReleaseResult,
    ReserveAllowed,
    ReserveDenied,
    ReserveResult,
    StatusResult,
    StoreStatus,
    Synced,
    SyncResult,
    remaining_slots,
)
from licensegate.db.models import Store
from licensegate.errors import PersistenceFailure
from licensegate.services.audit import AuditLog, get_audit_log
from licensegate.services.notifications import (
    DomainEvent,
    DomainEventType,
    NotificationBus,
    get_notifier,
)
from licensegate.services.plans import (
    get_limit_for_plan,
    get_next_plan,
    get_upgrade_url,
    usage_percent,
)

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Lookups
# =============================================================================

async def get_store_by_token(db: AsyncSession, store_token: str) -> Store | None:
    """Fetch a store by token. Raises PersistenceFailure on storage errors."""
    try:
        result = await db.execute(select(Store).where(Store.store_token == store_token))
        return result.scalar_one_or_none()
    except SQLAlchemyError as e:
        logger.error(f"Store lookup failed: {e}")
        raise PersistenceFailure() from e


async def get_store_by_license(db: AsyncSession, license_id: int) -> Store | None:
    """Fetch the store connected under an external license id."""
    try:
        result = await db.execute(select(Store).where(Store.license_id == license_id))
        return result.scalars().first()
    except SQLAlchemyError as e:
        logger.error(f"Store lookup by license failed: {e}")
        raise PersistenceFailure() from e


@dataclass(frozen=True)
class ConnectionGrant:
    """Result of connecting (or reconnecting) a store."""
    store: Store
    credentials: StoreCredentials
    reactivated: bool

    def as_client_payload(self) -> dict[str, object]:
        """Connection data handed to the client once, at activation."""
        return {
            "enabled": True,
            "store_token": self.credentials.store_token,
            "store_secret": self.credentials.signing_key,
            "plan": self.store.plan,
            "license_limit": self.store.license_limit,
            "api_base": settings.api_base_url,
        }


@dataclass(frozen=True)
class StoreListing:
    stores: list[Store]
    total: int


_ORDERABLE_COLUMNS = {
    "last_seen_at": Store.last_seen_at,
    "license_count": Store.license_count,
    "plan": Store.plan,
    "connected_at": Store.connected_at,
    "store_url": Store.store_url,
}


async def list_stores(
    db: AsyncSession,
    *,
    plan: str | None = None,
    search: str | None = None,
    order_by: str = "last_seen_at",
    descending: bool = True,
    page: int = 1,
    per_page: int = 20,
) -> StoreListing:
    """
    Page through stores for operators.

    Args:
        plan: Only stores on this plan
        search: Substring match on store URL or name
        order_by: One of last_seen_at, license_count, plan, connected_at,
            store_url; anything else falls back to last_seen_at
        descending: Sort direction
        page: 1-based page number
        per_page: Page size
    """
    conditions = []
    if plan:
        conditions.append(Store.plan == plan)
    if search:
        pattern = f"%{search}%"
        conditions.append(or_(Store.store_url.ilike(pattern), Store.store_name.ilike(pattern)))

    column = _ORDERABLE_COLUMNS.get(order_by, Store.last_seen_at)
    ordering = column.desc() if descending else column.asc()
    page = max(page, 1)

    try:
        total = (
            await db.execute(select(func.count(Store.id)).where(*conditions))
        ).scalar() or 0
        rows = await db.execute(
            select(Store)
            .where(*conditions)
            .order_by(ordering, Store.id)
            .limit(per_page)
            .offset((page - 1) * per_page)
        )
        return StoreListing(stores=list(rows.scalars().all()), total=total)
    except SQLAlchemyError as e:
        logger.error(f"Store listing failed: {e}")
        raise PersistenceFailure() from e


# =============================================================================
# Ledger
# =============================================================================

class QuotaLedger:
    """
    Reserve/release/sync/status operations for one request.

    Usage:
        ledger = QuotaLedger(db, source_address=request_ip)
        result = await ledger.reserve(token, license_key_hash, product_id)
    """

    def __init__(
        self,
        db: AsyncSession,
        *,
        audit: AuditLog | None = None,
        notifier: NotificationBus | None = None,
        source_address: str | None = None,
    ):
        self.db = db
        self.audit = audit or get_audit_log()
        self.notifier = notifier or get_notifier()
        self.source_address = source_address

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self._rollback()
            logger.error(f"Ledger commit failed: {e}")
            raise PersistenceFailure() from e

    async def _rollback(self) -> None:
        try:
            await self.db.rollback()
        except SQLAlchemyError as e:
            logger.error(f"Ledger rollback failed: {e}")

    async def _execute(self, stmt):  # type: ignore[no-untyped-def]
        """Run a statement, converting storage errors to PersistenceFailure."""
        try:
            return await self.db.execute(stmt)
        except SQLAlchemyError as e:
            await self._rollback()
            logger.error(f"Ledger statement failed: {e}")
            raise PersistenceFailure() from e

    async def _emit(self, event_type: DomainEventType, store_token: str, **payload: object) -> None:
        await self.notifier.emit(DomainEvent(type=event_type, store_token=store_token, payload=payload))

    async def _lookup(self, store_token: str) -> Store | None:
        # The row may have changed under a concurrent request since this
        # session last loaded it.
        result = await self._execute(
            select(Store)
            .where(Store.store_token == store_token)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    # -------------------------------------------------------------------------
    # reserve
    # -------------------------------------------------------------------------

    async def reserve(
        self,
        store_token: str,
        license_key_hash: str,
        product_id: str,
    ) -> ReserveResult:
        """
        Reserve one license slot for a store.

        The increment only happens if, at the moment the database applies it,
        the store is connected and under its limit.  Denials are audit-logged
        and returned, not raised.
        """
        stmt = (
            update(Store)
            .where(
                Store.store_token == store_token,
                Store.is_connected.is_(True),
                or_(
                    Store.license_limit.is_(None),
                    Store.license_count < Store.license_limit,
                ),
            )
            .values(
                license_count=Store.license_count + 1,
                last_seen_at=_now(),
                updated_at=_now(),
            )
            .returning(Store.license_count, Store.license_limit, Store.plan)
            .execution_options(synchronize_session=False)
        )
        row = (await self._execute(stmt)).first()

        if row is not None:
            await self._commit()
            new_count, limit, plan = row
            await self.audit.record(
                store_token,
                EventType.RESERVED,
                count_before=new_count - 1,
                count_after=new_count,
                allowed=True,
                license_key_hash=license_key_hash,
                product_id=product_id,
                source_address=self.source_address,
            )
            await self._emit(
                DomainEventType.LICENSE_RESERVED,
                store_token,
                license_key_hash=license_key_hash,
                count=new_count,
            )
            logger.info(f"Reserved slot for store {store_token[:8]}... ({new_count}/{limit or 'unlimited'})")
            return ReserveAllowed(
                count=new_count,
                limit=limit,
                remaining=remaining_slots(limit, new_count),
                plan=plan,
            )

        # Nothing updated: work out why from the current row.
        store = await self._lookup(store_token)
        await self._commit()

        if store is None:
            return await self._deny(store_token, DenialReason.STORE_NOT_FOUND, license_key_hash, product_id)

        snapshot = LedgerSnapshot(
            count=store.license_count,
            limit=store.license_limit,
            plan=store.plan,
        )
        if not store.is_connected:
            return await self._deny(
                store_token, DenialReason.STORE_DISCONNECTED, license_key_hash, product_id, snapshot
            )

        denied = await self._deny(
            store_token, DenialReason.LIMIT_REACHED, license_key_hash, product_id, snapshot
        )
        await self._emit(
            DomainEventType.LIMIT_REACHED,
            store_token,
            plan=store.plan,
            limit=store.license_limit,
        )
        return denied

    async def _deny(
        self,
        store_token: str,
        reason: DenialReason,
        license_key_hash: str,
        product_id: str,
        snapshot: LedgerSnapshot | None = None,
    ) -> ReserveDenied:
        count = snapshot.count if snapshot else 0
        await self.audit.record(
            store_token,
            EventType.RESERVE_DENIED,
            count_before=count,
            count_after=count,
            allowed=False,
            denial_reason=reason,
            license_key_hash=license_key_hash,
            product_id=product_id,
            source_address=self.source_address,
        )
        logger.info(f"Reserve denied for store {store_token[:8]}...: {reason.value}")
        return ReserveDenied(
            reason=reason,
            snapshot=snapshot,
            upgrade_url=get_upgrade_url() if reason is DenialReason.LIMIT_REACHED else None,
        )

    # -------------------------------------------------------------------------
    # release
    # -------------------------------------------------------------------------

    async def release(self, store_token: str, license_key_hash: str) -> ReleaseResult:
        """
        Release one slot. The count is floored at zero; a release with nothing
        to release still succeeds.  Any release clears the over-limit flag.
        """
        now = _now()
        cleared = {
            "over_limit": False,
            "over_limit_amount": None,
            "last_seen_at": now,
            "updated_at": now,
        }
        decrement = (
            update(Store)
            .where(Store.store_token == store_token, Store.license_count > 0)
            .values(license_count=Store.license_count - 1, **cleared)
            .returning(Store.license_count, Store.license_limit)
            .execution_options(synchronize_session=False)
        )
        row = (await self._execute(decrement)).first()
        if row is not None:
            count_after, limit = row
            count_before = count_after + 1
        else:
            touch = (
                update(Store)
                .where(Store.store_token == store_token)
                .values(**cleared)
                .returning(Store.license_count, Store.license_limit)
                .execution_options(synchronize_session=False)
            )
            row = (await self._execute(touch)).first()
            if row is None:
                await self._commit()
                return LedgerFailure(reason=DenialReason.STORE_NOT_FOUND)
            count_after, limit = row
            count_before = count_after
        await self._commit()

        await self.audit.record(
            store_token,
            EventType.RELEASED,
            count_before=count_before,
            count_after=count_after,
            allowed=True,
            license_key_hash=license_key_hash,
            source_address=self.source_address,
        )
        await self._emit(
            DomainEventType.LICENSE_RELEASED,
            store_token,
            license_key_hash=license_key_hash,
            count=count_after,
        )
        logger.info(f"Released slot for store {store_token[:8]}... ({count_before} -> {count_after})")
        return Released(
            count=count_after,
            limit=limit,
            remaining=remaining_slots(limit, count_after),
        )

    # -------------------------------------------------------------------------
    # status / sync
    # -------------------------------------------------------------------------

    async def _touch(self, store_token: str):  # type: ignore[no-untyped-def]
        """Bump last_seen_at and return the row's quota columns atomically."""
        stmt = (
            update(Store)
            .where(Store.store_token == store_token)
            .values(last_seen_at=_now())
            .returning(
                Store.is_connected,
                Store.plan,
                Store.license_count,
                Store.license_limit,
            )
            .execution_options(synchronize_session=False)
        )
        row = (await self._execute(stmt)).first()
        await self._commit()
        return row

    async def status(self, store_token: str) -> StatusResult:
        """Connection state and entitlement. Only ``last_seen_at`` is written."""
        row = await self._touch(store_token)
        if row is None:
            return LedgerFailure(reason=DenialReason.STORE_NOT_FOUND)

        connected, plan, count, limit = row
        next_plan = get_next_plan(plan)
        return StoreStatus(
            connected=bool(connected),
            plan=plan,
            count=count,
            limit=limit,
            remaining=remaining_slots(limit, count),
            usage_percent=usage_percent(count, limit),
            is_unlimited=limit is None,
            upgrade_available=next_plan is not None,
            next_plan=next_plan,
        )

    async def sync(self, store_token: str, reported_count: int) -> SyncResult:
        """
        Compare a client's local count with the ledger.

        The server count is authoritative and is never changed here;
        ``difference`` is informational.
        """
        row = await self._touch(store_token)
        if row is None:
            return LedgerFailure(reason=DenialReason.STORE_NOT_FOUND)

        _, _, server_count, limit = row
        difference = abs(server_count - reported_count)

        await self.audit.record(
            store_token,
            EventType.SYNC,
            count_before=reported_count,
            count_after=server_count,
            allowed=True,
            source_address=self.source_address,
        )
        await self._emit(
            DomainEventType.COUNTS_SYNCED,
            store_token,
            server_count=server_count,
            reported_count=reported_count,
            difference=difference,
        )
        if difference:
            logger.info(
                f"Sync drift for store {store_token[:8]}...: "
                f"server={server_count} reported={reported_count}"
            )
        return Synced(
            server_count=server_count,
            reported_count=reported_count,
            difference=difference,
            limit=limit,
        )

    # -------------------------------------------------------------------------
    # plan / connection state
    # -------------------------------------------------------------------------

    async def set_plan(self, store_token: str, new_plan: str) -> PlanChangeResult:
        """
        Move a store to ``new_plan``.

        If the store holds more licenses than the new limit it is flagged
        over-limit with the overage; otherwise the flag is cleared.  The count
        itself is never truncated.
        """
        new_limit = get_limit_for_plan(new_plan)
        if new_limit is None:
            flag = False
            amount = None
        else:
            over = Store.license_count > new_limit
            flag = case((over, True), else_=False)
            amount = case((over, Store.license_count - new_limit), else_=None)

        stmt = (
            update(Store)
            .where(Store.store_token == store_token)
            .values(
                plan=new_plan,
                license_limit=new_limit,
                over_limit=flag,
                over_limit_amount=amount,
                updated_at=_now(),
            )
            .returning(Store.license_count, Store.over_limit, Store.over_limit_amount)
            .execution_options(synchronize_session=False)
        )
        row = (await self._execute(stmt)).first()
        await self._commit()
        if row is None:
            return LedgerFailure(reason=DenialReason.STORE_NOT_FOUND)

        count, over_limit, over_amount = row
        logger.info(f"Store {store_token[:8]}... moved to plan '{new_plan}' (limit {new_limit or 'unlimited'})")
        if over_limit:
            logger.warning(
                f"Store {store_token[:8]}... is over limit by {over_amount} after plan change"
            )
            await self._emit(
                DomainEventType.STORE_OVER_LIMIT,
                store_token,
                plan=new_plan,
                count=count,
                limit=new_limit,
                over_limit_amount=over_amount,
            )
        return PlanUpdated(
            plan=new_plan,
            limit=new_limit,
            count=count,
            over_limit=bool(over_limit),
            over_limit_amount=over_amount,
        )

    async def connect(
        self,
        license_key: str,
        license_id: int,
        store_url: str,
        plan: str,
        store_name: str | None = None,
    ) -> ConnectionGrant:
        """
        Connect the store for ``license_key``, or reactivate it if it exists.

        Reactivation refreshes plan, limit and URL, marks the store connected
        and clears any over-limit flag; the license count is kept.
        """
        if not license_key or not license_id or not store_url:
            raise ValueError("license_key, license_id and store_url are required")

        credentials = issue_credentials(license_key)
        limit = get_limit_for_plan(plan)
        now = _now()

        reactivate = (
            update(Store)
            .where(Store.store_token == credentials.store_token)
            .values(
                is_connected=True,
                plan=plan,
                license_limit=limit,
                store_url=store_url,
                over_limit=False,
                over_limit_amount=None,
                last_seen_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._execute(reactivate)
        reactivated = result.rowcount > 0

        if not reactivated:
            self.db.add(Store(
                store_token=credentials.store_token,
                secret_material=credentials.signing_key,
                license_id=license_id,
                store_url=store_url,
                store_name=store_name,
                plan=plan,
                license_count=0,
                license_limit=limit,
                is_connected=True,
                connected_at=now,
                last_seen_at=now,
            ))
        await self._commit()

        store = await self._lookup(credentials.store_token)
        if store is None:
            raise PersistenceFailure("Store row missing after connect.")

        if reactivated:
            logger.info(f"Reactivated store {credentials.store_token[:8]}... on plan '{plan}'")
        else:
            logger.info(f"Connected new store {credentials.store_token[:8]}... on plan '{plan}'")
        await self._emit(
            DomainEventType.STORE_CONNECTED,
            credentials.store_token,
            license_id=license_id,
            store_url=store_url,
            plan=plan,
            reactivated=reactivated,
        )
        return ConnectionGrant(store=store, credentials=credentials, reactivated=reactivated)

    async def reactivate(self, store_token: str) -> bool:
        """Mark an existing store connected again (e.g. subscription renewed)."""
        stmt = (
            update(Store)
            .where(Store.store_token == store_token)
            .values(is_connected=True, over_limit=False, over_limit_amount=None, updated_at=_now())
            .execution_options(synchronize_session=False)
        )
        result = await self._execute(stmt)
        await self._commit()
        if result.rowcount == 0:
            return False
        await self._emit(DomainEventType.STORE_CONNECTED, store_token, reactivated=True)
        return True

    async def disconnect(self, store_token: str) -> bool:
        """Mark a store disconnected. Idempotent; the row is kept."""
        stmt = (
            update(Store)
            .where(Store.store_token == store_token)
            .values(is_connected=False, updated_at=_now())
            .execution_options(synchronize_session=False)
        )
        result = await self._execute(stmt)
        await self._commit()
        if result.rowcount == 0:
            return False
        logger.info(f"Disconnected store {store_token[:8]}...")
        await self._emit(DomainEventType.STORE_DISCONNECTED, store_token)
        return True
