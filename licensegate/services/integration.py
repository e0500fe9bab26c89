"""
Inbound notifications from the subscription/licensing system.

The licensing system tells us when a license is activated or deactivated,
when a subscription's plan changes, and when a subscription's status moves.
Each notification type is a small frozen dataclass with a handler that maps
it onto ledger calls.  ``handle_notification`` dispatches by type; nothing
here depends on how notifications are delivered.

Notifications for products other than ``settings.enforced_product_id`` are
ignored (every product is enforced when it is unset).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Union

from sqlalchemy.ext.asyncio import AsyncSession

from licensegate.config import settings
from licensegate.contracts.ledger_types import LedgerFailure
from licensegate.services.ledger import ConnectionGrant, QuotaLedger, get_store_by_license
from licensegate.services.plans import get_plan_for_price

logger = logging.getLogger(__name__)

DISCONNECTING_STATUSES = frozenset({"cancelled", "expired", "failing"})
REACTIVATING_STATUSES = frozenset({"active"})


@dataclass(frozen=True)
class LicenseActivated:
    license_id: int
    license_key: str
    site_url: str
    product_id: int | None = None
    price_id: int | None = None
    store_name: str | None = None


@dataclass(frozen=True)
class LicenseDeactivated:
    license_id: int
    site_url: str | None = None


@dataclass(frozen=True)
class PlanChanged:
    license_id: int
    price_id: int
    product_id: int | None = None


@dataclass(frozen=True)
class SubscriptionStatusChanged:
    license_id: int
    old_status: str
    new_status: str
    product_id: int | None = None


InboundNotification = Union[
    LicenseActivated,
    LicenseDeactivated,
    PlanChanged,
    SubscriptionStatusChanged,
]


@dataclass(frozen=True)
class NotificationOutcome:
    """What a handler did. ``grant`` is set only when a store was connected."""
    action: str
    store_token: str | None = None
    grant: ConnectionGrant | None = None


IGNORED = NotificationOutcome(action="ignored")
NO_STORE = NotificationOutcome(action="store_not_found")


def applies_to_product(product_id: int | None) -> bool:
    """True when licenses for ``product_id`` are enforced here."""
    if settings.enforced_product_id is None:
        return True
    return product_id == settings.enforced_product_id


async def on_license_activated(ledger: QuotaLedger, event: LicenseActivated) -> NotificationOutcome:
    """Connect (or reactivate) the store for a newly activated license."""
    if not applies_to_product(event.product_id):
        return IGNORED
    grant = await ledger.connect(
        license_key=event.license_key,
        license_id=event.license_id,
        store_url=event.site_url,
        plan=get_plan_for_price(event.price_id),
        store_name=event.store_name,
    )
    return NotificationOutcome(
        action="reactivated" if grant.reactivated else "connected",
        store_token=grant.credentials.store_token,
        grant=grant,
    )


async def on_license_deactivated(ledger: QuotaLedger, event: LicenseDeactivated) -> NotificationOutcome:
    store = await get_store_by_license(ledger.db, event.license_id)
    if store is None:
        return NO_STORE
    await ledger.disconnect(store.store_token)
    return NotificationOutcome(action="disconnected", store_token=store.store_token)


async def on_plan_changed(ledger: QuotaLedger, event: PlanChanged) -> NotificationOutcome:
    """Apply an upgrade or downgrade; downgrades below the count only flag."""
    if not applies_to_product(event.product_id):
        return IGNORED
    store = await get_store_by_license(ledger.db, event.license_id)
    if store is None:
        return NO_STORE
    result = await ledger.set_plan(store.store_token, get_plan_for_price(event.price_id))
    if isinstance(result, LedgerFailure):
        return NO_STORE
    return NotificationOutcome(action="plan_changed", store_token=store.store_token)


async def on_subscription_status_changed(
    ledger: QuotaLedger,
    event: SubscriptionStatusChanged,
) -> NotificationOutcome:
    """Disconnect on cancelled/expired/failing, reconnect on active."""
    if not applies_to_product(event.product_id):
        return IGNORED
    store = await get_store_by_license(ledger.db, event.license_id)
    if store is None:
        return NO_STORE

    if event.new_status in DISCONNECTING_STATUSES:
        await ledger.disconnect(store.store_token)
        return NotificationOutcome(action="disconnected", store_token=store.store_token)
    if event.new_status in REACTIVATING_STATUSES:
        if store.is_connected:
            return NotificationOutcome(action="unchanged", store_token=store.store_token)
        await ledger.reactivate(store.store_token)
        return NotificationOutcome(action="reactivated", store_token=store.store_token)

    logger.debug(f"Subscription status '{event.new_status}' needs no ledger change")
    return NotificationOutcome(action="unchanged", store_token=store.store_token)


Handler = Callable[[QuotaLedger, "InboundNotification"], Awaitable[NotificationOutcome]]

_HANDLERS: dict[type, Handler] = {
    LicenseActivated: on_license_activated,  # type: ignore[dict-item]
    LicenseDeactivated: on_license_deactivated,  # type: ignore[dict-item]
    PlanChanged: on_plan_changed,  # type: ignore[dict-item]
    SubscriptionStatusChanged: on_subscription_status_changed,  # type: ignore[dict-item]
}


async def handle_notification(
    db: AsyncSession,
    notification: InboundNotification,
    ledger: QuotaLedger | None = None,
) -> NotificationOutcome:
    """
    Apply one inbound notification to the ledger.

    Raises:
        TypeError: for a notification type with no handler
        PersistenceFailure: if the ledger cannot read or write storage
    """
    handler = _HANDLERS.get(type(notification))
    if handler is None:
        raise TypeError(f"Unsupported notification: {type(notification).__name__}")
    outcome = await handler(ledger or QuotaLedger(db), notification)
    logger.info(
        f"{type(notification).__name__} for license {notification.license_id}: {outcome.action}"
    )
    return outcome
