"""
Signed license endpoints: reserve, release, sync.

Each request is authenticated (headers, timestamp window, store, signature,
rate limit) by ``require_signed_store`` before the ledger is touched.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from licensegate.auth.dependencies import client_address, require_signed_store
from licensegate.contracts.ledger_types import DenialReason, LedgerFailure, ReserveDenied
from licensegate.db import get_db
from licensegate.db.models import Store
from licensegate.models.requests import ReleaseRequest, ReserveRequest, SyncRequest
from licensegate.models.responses import (
    FailureResponse,
    ReleaseResponse,
    ReserveAllowedResponse,
    ReserveDeniedResponse,
    SyncResponse,
)
from licensegate.services.ledger import QuotaLedger

logger = logging.getLogger(__name__)

router = APIRouter()


def _not_found_or(failure: LedgerFailure, fallback_error: str) -> JSONResponse:
    if failure.reason is DenialReason.STORE_NOT_FOUND:
        return JSONResponse(
            status_code=failure.status_code,
            content=FailureResponse.from_failure(failure).model_dump(),
        )
    return JSONResponse(
        status_code=400,
        content=FailureResponse.from_failure(failure, error=fallback_error).model_dump(),
    )


@router.post(
    "/license/reserve",
    response_model=ReserveAllowedResponse,
    responses={
        403: {"model": ReserveDeniedResponse, "description": "Limit reached or store disconnected"},
        404: {"model": ReserveDeniedResponse, "description": "Store not found"},
        429: {"description": "Rate limit exceeded"},
    },
)
async def reserve_license(
    body: ReserveRequest,
    request: Request,
    store: Store = Depends(require_signed_store),
    db: AsyncSession = Depends(get_db),
) -> ReserveAllowedResponse | JSONResponse:
    """
    Check and reserve one license slot.

    Call before creating a license.  A denial means the license must not be
    created.
    """
    ledger = QuotaLedger(db, source_address=client_address(request))
    result = await ledger.reserve(store.store_token, body.license_key_hash, body.product_id)

    if isinstance(result, ReserveDenied):
        return JSONResponse(
            status_code=result.status_code,
            content=ReserveDeniedResponse.from_result(result).model_dump(),
        )
    return ReserveAllowedResponse.from_result(result)


@router.post(
    "/license/release",
    response_model=ReleaseResponse,
    responses={
        404: {"model": FailureResponse, "description": "Store not found"},
        429: {"description": "Rate limit exceeded"},
    },
)
async def release_license(
    body: ReleaseRequest,
    request: Request,
    store: Store = Depends(require_signed_store),
    db: AsyncSession = Depends(get_db),
) -> ReleaseResponse | JSONResponse:
    """Release one license slot after a license is deleted."""
    ledger = QuotaLedger(db, source_address=client_address(request))
    result = await ledger.release(store.store_token, body.license_key_hash)

    if isinstance(result, LedgerFailure):
        return _not_found_or(result, "release_failed")
    return ReleaseResponse.from_result(result)


@router.post(
    "/sync",
    response_model=SyncResponse,
    responses={
        404: {"model": FailureResponse, "description": "Store not found"},
        429: {"description": "Rate limit exceeded"},
    },
)
async def sync_counts(
    body: SyncRequest,
    request: Request,
    store: Store = Depends(require_signed_store),
    db: AsyncSession = Depends(get_db),
) -> SyncResponse | JSONResponse:
    """
    Reconcile the client's local count with the ledger.

    The server count is returned as authoritative; it is never adjusted.
    """
    ledger = QuotaLedger(db, source_address=client_address(request))
    result = await ledger.sync(store.store_token, body.reported_count)

    if isinstance(result, LedgerFailure):
        return _not_found_or(result, "sync_failed")
    return SyncResponse.from_result(result)
