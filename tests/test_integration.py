"""Tests for inbound subscription/licensing notifications."""
from __future__ import annotations

import pytest
from sqlalchemy import select

from licensegate.auth.credentials import derive_store_token
from licensegate.config import settings
from licensegate.db.models import Store
from licensegate.services.audit import AuditLog
from licensegate.services.integration import (
    LicenseActivated,
    LicenseDeactivated,
    PlanChanged,
    SubscriptionStatusChanged,
    applies_to_product,
    handle_notification,
)
from licensegate.services.ledger import QuotaLedger
from licensegate.services.notifications import DomainEvent, DomainEventType, NotificationBus


@pytest.fixture
def events() -> list[DomainEvent]:
    return []


@pytest.fixture
def ledger(db_session, events) -> QuotaLedger:
    bus = NotificationBus()
    bus.subscribe(events.append)
    return QuotaLedger(db_session, audit=AuditLog(), notifier=bus)


async def _store(db_session, license_key: str) -> Store:
    result = await db_session.execute(
        select(Store)
        .where(Store.store_token == derive_store_token(license_key))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def test_activation_connects_store_with_plan_from_price(db_session, ledger):
    outcome = await handle_notification(
        db_session,
        LicenseActivated(license_id=9, license_key="ACT-KEY", site_url="https://a.example.com", price_id=2),
        ledger=ledger,
    )

    assert outcome.action == "connected"
    assert outcome.store_token == derive_store_token("ACT-KEY")
    assert outcome.grant.as_client_payload()["plan"] == "studio"
    store = await _store(db_session, "ACT-KEY")
    assert store.license_id == 9
    assert store.license_limit is None


async def test_second_activation_reactivates(db_session, ledger):
    event = LicenseActivated(license_id=9, license_key="ACT-KEY", site_url="https://a.example.com", price_id=1)
    await handle_notification(db_session, event, ledger=ledger)
    await handle_notification(db_session, LicenseDeactivated(license_id=9), ledger=ledger)

    outcome = await handle_notification(db_session, event, ledger=ledger)

    assert outcome.action == "reactivated"
    store = await _store(db_session, "ACT-KEY")
    assert store.is_connected is True
    rows = (await db_session.execute(select(Store))).scalars().all()
    assert len(rows) == 1


async def test_other_products_ignored(db_session, ledger, monkeypatch):
    monkeypatch.setattr(settings, "enforced_product_id", 77)

    outcome = await handle_notification(
        db_session,
        LicenseActivated(license_id=9, license_key="ACT-KEY", site_url="https://a.example.com", product_id=12),
        ledger=ledger,
    )

    assert outcome.action == "ignored"
    assert (await db_session.execute(select(Store))).scalars().all() == []


def test_applies_to_product(monkeypatch):
    assert applies_to_product(None) is True
    assert applies_to_product(5) is True
    monkeypatch.setattr(settings, "enforced_product_id", 5)
    assert applies_to_product(5) is True
    assert applies_to_product(6) is False
    assert applies_to_product(None) is False


async def test_deactivation_disconnects(db_session, ledger, make_store, events):
    store = await make_store(license_id=31)

    outcome = await handle_notification(db_session, LicenseDeactivated(license_id=31), ledger=ledger)

    assert outcome.action == "disconnected"
    await db_session.refresh(store.store)
    assert store.store.is_connected is False
    assert [e.type for e in events] == [DomainEventType.STORE_DISCONNECTED]


async def test_deactivation_for_unknown_license(db_session, ledger):
    outcome = await handle_notification(db_session, LicenseDeactivated(license_id=404), ledger=ledger)
    assert outcome.action == "store_not_found"


async def test_plan_change_downgrade_flags_over_limit(db_session, ledger, make_store, events):
    store = await make_store(license_id=31, plan="agency", limit=None, count=620)

    outcome = await handle_notification(db_session, PlanChanged(license_id=31, price_id=1), ledger=ledger)

    assert outcome.action == "plan_changed"
    await db_session.refresh(store.store)
    assert store.store.plan == "solo"
    assert store.store.over_limit is True
    assert store.store.over_limit_amount == 120
    assert [e.type for e in events] == [DomainEventType.STORE_OVER_LIMIT]


@pytest.mark.parametrize("status", ["cancelled", "expired", "failing"])
async def test_lapsed_subscription_disconnects(db_session, ledger, make_store, status):
    store = await make_store(license_id=31)

    outcome = await handle_notification(
        db_session,
        SubscriptionStatusChanged(license_id=31, old_status="active", new_status=status),
        ledger=ledger,
    )

    assert outcome.action == "disconnected"
    await db_session.refresh(store.store)
    assert store.store.is_connected is False


async def test_active_subscription_reconnects(db_session, ledger, make_store):
    store = await make_store(license_id=31, connected=False)

    outcome = await handle_notification(
        db_session,
        SubscriptionStatusChanged(license_id=31, old_status="failing", new_status="active"),
        ledger=ledger,
    )

    assert outcome.action == "reactivated"
    await db_session.refresh(store.store)
    assert store.store.is_connected is True


async def test_other_status_changes_nothing(db_session, ledger, make_store):
    await make_store(license_id=31)
    outcome = await handle_notification(
        db_session,
        SubscriptionStatusChanged(license_id=31, old_status="active", new_status="pending"),
        ledger=ledger,
    )
    assert outcome.action == "unchanged"


async def test_unsupported_notification_type(db_session, ledger):
    with pytest.raises(TypeError):
        await handle_notification(db_session, object(), ledger=ledger)  # type: ignore[arg-type]
