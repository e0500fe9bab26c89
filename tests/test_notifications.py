"""Tests for the outbound notification bus."""
from __future__ import annotations

from licensegate.services.notifications import (
    DomainEvent,
    DomainEventType,
    NotificationBus,
    get_notifier,
)


def _event(kind: DomainEventType = DomainEventType.LICENSE_RESERVED) -> DomainEvent:
    return DomainEvent(type=kind, store_token="t" * 64, payload={"count": 1})


async def test_emit_without_listeners_is_noop():
    await NotificationBus().emit(_event())


async def test_sync_and_async_listeners_receive_events():
    bus = NotificationBus()
    seen: list[str] = []

    def sync_listener(event: DomainEvent) -> None:
        seen.append(f"sync:{event.type.value}")

    async def async_listener(event: DomainEvent) -> None:
        seen.append(f"async:{event.type.value}")

    bus.subscribe(sync_listener)
    bus.subscribe(async_listener)
    await bus.emit(_event())

    assert seen == ["sync:license_reserved", "async:license_reserved"]


async def test_type_filter():
    bus = NotificationBus()
    seen: list[DomainEvent] = []
    bus.subscribe(seen.append, types={DomainEventType.LIMIT_REACHED})

    await bus.emit(_event(DomainEventType.LICENSE_RESERVED))
    await bus.emit(_event(DomainEventType.LIMIT_REACHED))

    assert [e.type for e in seen] == [DomainEventType.LIMIT_REACHED]


async def test_failing_listener_does_not_stop_others():
    bus = NotificationBus()
    seen: list[DomainEvent] = []

    def broken(event: DomainEvent) -> None:
        raise RuntimeError("dashboard down")

    bus.subscribe(broken)
    bus.subscribe(seen.append)
    await bus.emit(_event())

    assert len(seen) == 1


async def test_unsubscribe():
    bus = NotificationBus()
    seen: list[DomainEvent] = []
    unsubscribe = bus.subscribe(seen.append)
    unsubscribe()
    unsubscribe()
    await bus.emit(_event())
    assert seen == []


def test_singleton():
    assert get_notifier() is get_notifier()
