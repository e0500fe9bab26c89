"""Response models for the LicenseGate API.

Ledger results are frozen dataclasses; the ``from_result`` helpers turn them
into the wire shape.
"""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

from licensegate.contracts.ledger_types import (
    LedgerFailure,
    Released,
    ReserveAllowed,
    ReserveDenied,
    StoreStatus,
    Synced,
)


class QuotaData(BaseModel):
    count: int
    limit: int | None
    remaining: int | None
    plan: str


class ReserveAllowedResponse(BaseModel):
    success: Literal[True] = True
    allowed: Literal[True] = True
    data: QuotaData

    @classmethod
    def from_result(cls, result: ReserveAllowed) -> "ReserveAllowedResponse":
        return cls(data=QuotaData(
            count=result.count,
            limit=result.limit,
            remaining=result.remaining,
            plan=result.plan,
        ))


class DeniedQuotaData(BaseModel):
    count: int
    limit: int | None
    remaining: int
    plan: str | None
    upgrade_url: str | None = None


class ReserveDeniedResponse(BaseModel):
    success: Literal[False] = False
    allowed: Literal[False] = False
    error: str
    message: str
    data: DeniedQuotaData | None = None

    @classmethod
    def from_result(cls, result: ReserveDenied) -> "ReserveDeniedResponse":
        data = None
        if result.snapshot is not None:
            data = DeniedQuotaData(
                count=result.snapshot.count,
                limit=result.snapshot.limit,
                remaining=0,
                plan=result.snapshot.plan,
                upgrade_url=result.upgrade_url,
            )
        return cls(error=result.reason.value, message=result.message, data=data)


class ReleaseData(BaseModel):
    count: int
    limit: int | None
    remaining: int | None


class ReleaseResponse(BaseModel):
    success: Literal[True] = True
    data: ReleaseData

    @classmethod
    def from_result(cls, result: Released) -> "ReleaseResponse":
        return cls(data=ReleaseData(
            count=result.count,
            limit=result.limit,
            remaining=result.remaining,
        ))


class StatusData(BaseModel):
    connected: bool
    plan: str
    count: int
    limit: int | None
    remaining: int | None
    usage_percent: float
    is_unlimited: bool
    upgrade_available: bool
    next_plan: str | None


class StatusResponse(BaseModel):
    success: Literal[True] = True
    data: StatusData

    @classmethod
    def from_result(cls, result: StoreStatus) -> "StatusResponse":
        return cls(data=StatusData(
            connected=result.connected,
            plan=result.plan,
            count=result.count,
            limit=result.limit,
            remaining=result.remaining,
            usage_percent=result.usage_percent,
            is_unlimited=result.is_unlimited,
            upgrade_available=result.upgrade_available,
            next_plan=result.next_plan,
        ))


class SyncData(BaseModel):
    server_count: int
    reported_count: int
    difference: int
    action: str
    limit: int | None


class SyncResponse(BaseModel):
    success: Literal[True] = True
    data: SyncData

    @classmethod
    def from_result(cls, result: Synced) -> "SyncResponse":
        return cls(data=SyncData(
            server_count=result.server_count,
            reported_count=result.reported_count,
            difference=result.difference,
            action=result.action,
            limit=result.limit,
        ))


class FailureResponse(BaseModel):
    success: Literal[False] = False
    error: str
    message: str

    @classmethod
    def from_failure(cls, failure: LedgerFailure, error: str | None = None) -> "FailureResponse":
        return cls(error=error or failure.reason.value, message=failure.message)


class AuditHealthData(BaseModel):
    failures: int
    last_failure_at: str | None
    last_error: str | None


class HealthResponse(BaseModel):
    status: Literal["healthy", "degraded", "unhealthy"]
    version: str
    database: str
    connected_stores: int | None = None
    total_stores: int | None = None
    events_today: int | None = None
    stores_at_limit: int | None = None
    denials_today: int | None = None
    audit: AuditHealthData
    timestamp: str
