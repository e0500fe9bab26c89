"""Health check endpoint."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from licensegate.config import settings
from licensegate.db import get_db
from licensegate.models.responses import HealthResponse
from licensegate.services.audit import get_audit_log
from licensegate.services.health import health_report

router = APIRouter()

limiter_by_ip = Limiter(key_func=get_remote_address)


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={
        429: {"description": "Rate limit exceeded"},
        503: {"model": HealthResponse, "description": "Database unavailable"},
    },
)
@limiter_by_ip.limit(settings.health_rate_limit_per_ip)
async def health_check(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """
    Service health, no authentication.

    Reports database reachability, store and event totals for today, and any
    audit write failures since startup.
    """
    report, database_ok = await health_report(db, get_audit_log())
    payload = HealthResponse.model_validate(report).model_dump()
    return JSONResponse(status_code=200 if database_ok else 503, content=payload)
