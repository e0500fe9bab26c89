"""Read-only store status endpoint (store token + rate limit, no signature)."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from licensegate.auth.dependencies import require_store_token
from licensegate.contracts.ledger_types import LedgerFailure
from licensegate.db import get_db
from licensegate.db.models import Store
from licensegate.models.responses import FailureResponse, StatusResponse
from licensegate.services.ledger import QuotaLedger

router = APIRouter()


@router.get(
    "/status",
    response_model=StatusResponse,
    responses={404: {"model": FailureResponse, "description": "Store not found"}},
)
async def store_status(
    store: Store = Depends(require_store_token),
    db: AsyncSession = Depends(get_db),
) -> StatusResponse | JSONResponse:
    """Connection state, plan, and usage for a store."""
    result = await QuotaLedger(db).status(store.store_token)
    if isinstance(result, LedgerFailure):
        return JSONResponse(
            status_code=result.status_code,
            content=FailureResponse.from_failure(result).model_dump(),
        )
    return StatusResponse.from_result(result)
