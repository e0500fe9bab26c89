"""
Operator endpoints: store listing, usage reporting, and inbound notifications.

All routes require an admin bearer token (see ``licensegate admin-token``).
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from licensegate.auth.dependencies import require_admin
from licensegate.auth.tokens import TokenClaims
from licensegate.db import get_db
from licensegate.services.audit import daily_usage
from licensegate.services.integration import (
    LicenseActivated,
    LicenseDeactivated,
    PlanChanged,
    SubscriptionStatusChanged,
    handle_notification,
)
from licensegate.services.ledger import list_stores

logger = logging.getLogger(__name__)

router = APIRouter()


# Request/Response Models

class StoreSummary(BaseModel):
    store_token: str
    store_url: str
    store_name: str | None
    license_id: int
    plan: str
    count: int
    limit: int | None
    connected: bool
    over_limit: bool
    over_limit_amount: int | None
    connected_at: datetime | None
    last_seen_at: datetime | None


class StoreListResponse(BaseModel):
    stores: list[StoreSummary]
    total: int
    page: int
    per_page: int


class UsageDay(BaseModel):
    day: str
    total: int
    allowed: int
    denied: int


class UsageResponse(BaseModel):
    days: list[UsageDay]


class LicenseActivatedIn(BaseModel):
    type: Literal["license_activated"]
    license_id: int = Field(..., gt=0)
    license_key: str = Field(..., min_length=1)
    site_url: str = Field(..., min_length=1)
    product_id: int | None = None
    price_id: int | None = None
    store_name: str | None = None


class LicenseDeactivatedIn(BaseModel):
    type: Literal["license_deactivated"]
    license_id: int = Field(..., gt=0)
    site_url: str | None = None


class PlanChangedIn(BaseModel):
    type: Literal["plan_changed"]
    license_id: int = Field(..., gt=0)
    price_id: int
    product_id: int | None = None


class SubscriptionStatusChangedIn(BaseModel):
    type: Literal["subscription_status_changed"]
    license_id: int = Field(..., gt=0)
    old_status: str
    new_status: str
    product_id: int | None = None


NotificationIn = Annotated[
    Union[LicenseActivatedIn, LicenseDeactivatedIn, PlanChangedIn, SubscriptionStatusChangedIn],
    Field(discriminator="type"),
]


class NotificationResult(BaseModel):
    action: str
    store_token: str | None = None
    connect: dict[str, Any] | None = Field(
        default=None,
        description="Connection data for the client; present only when a store was connected",
    )


def _to_notification(
    body: LicenseActivatedIn | LicenseDeactivatedIn | PlanChangedIn | SubscriptionStatusChangedIn,
) -> LicenseActivated | LicenseDeactivated | PlanChanged | SubscriptionStatusChanged:
    fields = body.model_dump(exclude={"type"})
    if isinstance(body, LicenseActivatedIn):
        return LicenseActivated(**fields)
    if isinstance(body, LicenseDeactivatedIn):
        return LicenseDeactivated(**fields)
    if isinstance(body, PlanChangedIn):
        return PlanChanged(**fields)
    return SubscriptionStatusChanged(**fields)


# Endpoints

@router.get("/admin/stores", response_model=StoreListResponse)
async def admin_list_stores(
    plan: str | None = Query(None),
    search: str | None = Query(None, max_length=200),
    orderby: str = Query("last_seen_at"),
    order: Literal["asc", "desc"] = Query("desc"),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    claims: TokenClaims = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> StoreListResponse:
    """List connected and disconnected stores with their quota position."""
    listing = await list_stores(
        db,
        plan=plan,
        search=search,
        order_by=orderby,
        descending=order == "desc",
        page=page,
        per_page=per_page,
    )
    return StoreListResponse(
        stores=[
            StoreSummary(
                store_token=store.store_token,
                store_url=store.store_url,
                store_name=store.store_name,
                license_id=store.license_id,
                plan=store.plan,
                count=store.license_count,
                limit=store.license_limit,
                connected=store.is_connected,
                over_limit=store.over_limit,
                over_limit_amount=store.over_limit_amount,
                connected_at=store.connected_at,
                last_seen_at=store.last_seen_at,
            )
            for store in listing.stores
        ],
        total=listing.total,
        page=page,
        per_page=per_page,
    )


@router.get("/admin/usage", response_model=UsageResponse)
async def admin_usage(
    days: int = Query(7, ge=1, le=90),
    claims: TokenClaims = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> UsageResponse:
    """Entitlement events per day and outcome over the trailing window."""
    usage = await daily_usage(db, days=days)
    return UsageResponse(days=[
        UsageDay(day=row.day.isoformat(), total=row.total, allowed=row.allowed, denied=row.denied)
        for row in usage
    ])


@router.post("/admin/notifications", response_model=NotificationResult)
async def admin_submit_notification(
    body: NotificationIn,
    claims: TokenClaims = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> NotificationResult:
    """
    Apply a notification from the subscription system.

    A ``license_activated`` notification returns the connection data the
    client needs (store token and signing key).  It is returned only here.
    """
    logger.info(f"Notification {body.type} submitted by {claims.get('sub', 'unknown')}")
    outcome = await handle_notification(db, _to_notification(body))
    return NotificationResult(
        action=outcome.action,
        store_token=outcome.store_token,
        connect=outcome.grant.as_client_payload() if outcome.grant else None,
    )
