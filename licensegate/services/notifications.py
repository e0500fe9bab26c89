"""Outbound domain notifications.

The ledger announces what happened (store connected, slot reserved, limit
reached, ...) on a ``NotificationBus``.  Listeners are optional: with none
subscribed an emit is a no-op.  A listener that raises is logged and
skipped; it never affects the ledger operation that emitted the event.
"""
from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class DomainEventType(str, Enum):
    STORE_CONNECTED = "store_connected"
    STORE_DISCONNECTED = "store_disconnected"
    LICENSE_RESERVED = "license_reserved"
    LICENSE_RELEASED = "license_released"
    LIMIT_REACHED = "limit_reached"
    STORE_OVER_LIMIT = "store_over_limit"
    COUNTS_SYNCED = "counts_synced"


@dataclass(frozen=True)
class DomainEvent:
    type: DomainEventType
    store_token: str
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Listener = Callable[[DomainEvent], Awaitable[None] | None]


class NotificationBus:
    """Fan-out of domain events to subscribed listeners."""

    def __init__(self) -> None:
        self._listeners: list[tuple[Listener, frozenset[DomainEventType] | None]] = []

    def subscribe(
        self,
        listener: Listener,
        types: set[DomainEventType] | None = None,
    ) -> Callable[[], None]:
        """Register ``listener`` for ``types`` (all types when None).

        Returns a callable that unsubscribes it.
        """
        entry = (listener, frozenset(types) if types else None)
        self._listeners.append(entry)

        def _unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return _unsubscribe

    async def emit(self, event: DomainEvent) -> None:
        logger.debug(f"Domain event {event.type.value} for store {event.store_token[:8]}...")
        for listener, types in list(self._listeners):
            if types is not None and event.type not in types:
                continue
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Listener {listener!r} failed on {event.type.value}: {e}")


_bus: NotificationBus | None = None


def get_notifier() -> NotificationBus:
    """Return the process-wide notification bus."""
    global _bus
    if _bus is None:
        _bus = NotificationBus()
    return _bus


def reset_notifier() -> None:
    global _bus
    _bus = None
