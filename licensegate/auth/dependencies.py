"""
FastAPI Authentication Dependencies

Store-facing endpoints authenticate with a signed request (mutations) or a
bare store token (status).  Admin endpoints require an operator bearer token
carrying ``role=admin``.
"""
from __future__ import annotations

import ipaddress
import json
import logging

from fastapi import Depends, Header, HTTPException, Query, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from licensegate.auth.authenticator import get_authenticator
from licensegate.auth.tokens import AccessCodeError, TokenClaims, hash_token, validate_access_code
from licensegate.db import get_db
from licensegate.db.models import Store

logger = logging.getLogger(__name__)

# HTTPBearer extracts the token from "Authorization: Bearer <token>" header
# auto_error=False allows us to provide custom error messages
security = HTTPBearer(auto_error=False)


def client_address(request: Request) -> str | None:
    """
    Caller address for audit records.

    Uses the first ``X-Forwarded-For`` entry when it is a valid IP, else the
    socket peer.  Later entries are never consulted.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",", 1)[0].strip()
        try:
            return str(ipaddress.ip_address(first))
        except ValueError:
            logger.debug(f"Ignoring invalid X-Forwarded-For entry: {first[:64]!r}")
    if request.client:
        return request.client.host
    return None


def _store_token_from_body(body: bytes) -> str | None:
    try:
        data = json.loads(body or b"{}")
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    token = data.get("store_token")
    return token if isinstance(token, str) and token else None


async def require_signed_store(
    request: Request,
    x_connect_timestamp: str | None = Header(None, alias="X-Connect-Timestamp"),
    x_connect_signature: str | None = Header(None, alias="X-Connect-Signature"),
    db: AsyncSession = Depends(get_db),
) -> Store:
    """
    FastAPI dependency for signed mutating endpoints.

    The signature covers the raw body bytes exactly as sent, so the body is
    read here before pydantic parses it.

    Raises:
        EntitlementError subclasses, rendered by the app's exception handler
    """
    body = await request.body()
    return await get_authenticator().authenticate_signed(
        db,
        timestamp=x_connect_timestamp,
        signature=x_connect_signature,
        store_token=_store_token_from_body(body),
        body=body,
    )


async def require_store_token(
    store_token: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
) -> Store:
    """FastAPI dependency for read-only store endpoints (token + rate limit)."""
    return await get_authenticator().authenticate_token(db, store_token)


async def require_admin(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> TokenClaims:
    """
    FastAPI dependency that requires a valid operator token with admin role.

    Raises:
        HTTPException 401: If token is missing, invalid, or expired
        HTTPException 403: If token lacks the admin role
    """
    if credentials is None:
        logger.warning("Admin access attempt without token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access code required. Please provide a valid access code.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        claims = validate_access_code(credentials.credentials)
    except AccessCodeError as e:
        logger.warning(
            "Invalid admin token %s...: %s", hash_token(credentials.credentials)[:16], e
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired access code.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if claims.get("role") != "admin":
        logger.warning(f"Non-admin token used on admin route by {claims.get('sub', 'unknown')}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required.",
        )
    return claims
