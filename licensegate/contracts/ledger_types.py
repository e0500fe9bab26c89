"""Typed result variants returned by the quota ledger.

Each ledger operation returns one of a small set of frozen dataclasses
instead of a loosely-typed dict.  Routes serialize them at the boundary.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from licensegate.errors import EntitlementError, LimitReached, StoreDisconnected, StoreNotFound


class EventType(str, Enum):
    """Audit event kinds written by the ledger."""
    RESERVED = "reserved"
    RELEASED = "released"
    RESERVE_DENIED = "reserve_denied"
    SYNC = "sync"


class DenialReason(str, Enum):
    """Why a ledger operation did not go through."""
    STORE_NOT_FOUND = "store_not_found"
    STORE_DISCONNECTED = "store_disconnected"
    LIMIT_REACHED = "license_limit_reached"


DENIAL_ERRORS: dict[DenialReason, type[EntitlementError]] = {
    DenialReason.STORE_NOT_FOUND: StoreNotFound,
    DenialReason.STORE_DISCONNECTED: StoreDisconnected,
    DenialReason.LIMIT_REACHED: LimitReached,
}


def denial_error(reason: DenialReason) -> EntitlementError:
    """The failure a denial reason renders as at the API boundary."""
    return DENIAL_ERRORS[reason]()


def remaining_slots(limit: int | None, count: int) -> int | None:
    """Slots left under ``limit``; None when unlimited, never negative."""
    if limit is None:
        return None
    return max(0, limit - count)


@dataclass(frozen=True)
class LedgerSnapshot:
    """Point-in-time view of a store's quota position."""
    count: int
    limit: int | None
    plan: str

    @property
    def remaining(self) -> int | None:
        return remaining_slots(self.limit, self.count)


@dataclass(frozen=True)
class ReserveAllowed:
    count: int
    limit: int | None
    remaining: int | None
    plan: str
    allowed: bool = field(default=True, init=False)


@dataclass(frozen=True)
class ReserveDenied:
    reason: DenialReason
    snapshot: LedgerSnapshot | None = None
    upgrade_url: str | None = None
    allowed: bool = field(default=False, init=False)

    @property
    def message(self) -> str:
        return denial_error(self.reason).message

    @property
    def status_code(self) -> int:
        return denial_error(self.reason).status_code


@dataclass(frozen=True)
class Released:
    count: int
    limit: int | None
    remaining: int | None


@dataclass(frozen=True)
class StoreStatus:
    connected: bool
    plan: str
    count: int
    limit: int | None
    remaining: int | None
    usage_percent: float
    is_unlimited: bool
    upgrade_available: bool
    next_plan: str | None


@dataclass(frozen=True)
class Synced:
    server_count: int
    reported_count: int
    difference: int
    limit: int | None
    action: str = field(default="server_authoritative", init=False)


@dataclass(frozen=True)
class PlanUpdated:
    plan: str
    limit: int | None
    count: int
    over_limit: bool
    over_limit_amount: int | None


@dataclass(frozen=True)
class LedgerFailure:
    """A non-reserve operation that could not find its store."""
    reason: DenialReason

    @property
    def message(self) -> str:
        return denial_error(self.reason).message

    @property
    def status_code(self) -> int:
        return denial_error(self.reason).status_code


ReserveResult = ReserveAllowed | ReserveDenied
ReleaseResult = Released | LedgerFailure
StatusResult = StoreStatus | LedgerFailure
SyncResult = Synced | LedgerFailure
PlanChangeResult = PlanUpdated | LedgerFailure
