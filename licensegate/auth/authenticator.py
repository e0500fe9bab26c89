"""
Request authentication for store-facing endpoints.

Signed requests (reserve, release, sync) are checked in this order, and the
first failure wins:

1. timestamp and signature headers present
2. timestamp within the accepted window of server time
3. store token present in the body
4. store exists
5. signature matches the store's signing material
6. per-store rate limit not exhausted

Read-only requests (status) skip the signature and only need a known store
token.  Both paths share the same rate limiter.
"""
from __future__ import annotations

import logging
import time
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from licensegate.auth.rate_limiter import RateLimiter, get_rate_limiter
from licensegate.auth.signatures import verify_signature
from licensegate.config import settings
from licensegate.db.models import Store
from licensegate.errors import (
    InvalidSignature,
    MissingCredentials,
    MissingStoreToken,
    StoreNotFound,
    TimestampOutOfWindow,
)
from licensegate.services.ledger import get_store_by_token

logger = logging.getLogger(__name__)


def parse_timestamp(raw: str) -> int | None:
    """Unix seconds from a header value, or None if it isn't an integer."""
    try:
        return int(raw.strip())
    except (TypeError, ValueError):
        return None


class RequestAuthenticator:
    """Verifies signed and token-only store requests."""

    def __init__(
        self,
        rate_limiter: RateLimiter,
        clock: Callable[[], float] = time.time,
        window_seconds: int | None = None,
    ):
        self.rate_limiter = rate_limiter
        self._clock = clock
        self.window_seconds = (
            window_seconds if window_seconds is not None else settings.signature_window_seconds
        )

    def check_timestamp(self, raw_timestamp: str) -> int:
        """
        Parse a timestamp header and enforce the skew window (both directions).

        Raises:
            TimestampOutOfWindow: unparseable, too old, or too far in the future
        """
        timestamp = parse_timestamp(raw_timestamp)
        if timestamp is None:
            raise TimestampOutOfWindow("Request timestamp is not a valid Unix time.")
        if abs(int(self._clock()) - timestamp) > self.window_seconds:
            raise TimestampOutOfWindow()
        return timestamp

    async def _require_store(self, db: AsyncSession, store_token: str) -> Store:
        store = await get_store_by_token(db, store_token)
        if store is None:
            logger.info(f"Request for unknown store {store_token[:8]}...")
            raise StoreNotFound()
        return store

    async def authenticate_signed(
        self,
        db: AsyncSession,
        *,
        timestamp: str | None,
        signature: str | None,
        store_token: str | None,
        body: bytes,
    ) -> Store:
        """
        Authenticate a signed mutating request.

        Args:
            db: Session used for the store lookup
            timestamp: Raw timestamp header value
            signature: Raw signature header value
            store_token: Token from the request body
            body: Raw request body exactly as received

        Returns:
            The authenticated store

        Raises:
            MissingCredentials, TimestampOutOfWindow, MissingStoreToken,
            StoreNotFound, InvalidSignature, RateLimited, PersistenceFailure
        """
        if not timestamp or not signature:
            raise MissingCredentials()

        ts = self.check_timestamp(timestamp)

        if not store_token:
            raise MissingStoreToken()

        store = await self._require_store(db, store_token)

        if not verify_signature(store.secret_material, store_token, ts, body, signature):
            logger.warning(f"Invalid signature for store {store_token[:8]}...")
            raise InvalidSignature()

        await self.rate_limiter.check(store_token)
        return store

    async def authenticate_token(self, db: AsyncSession, store_token: str | None) -> Store:
        """
        Authenticate a read-only request by store token alone.

        Raises:
            MissingStoreToken, StoreNotFound, RateLimited, PersistenceFailure
        """
        if not store_token:
            raise MissingStoreToken()
        store = await self._require_store(db, store_token)
        await self.rate_limiter.check(store_token)
        return store


_authenticator: RequestAuthenticator | None = None


def get_authenticator() -> RequestAuthenticator:
    """Return the process-wide authenticator bound to the shared rate limiter."""
    global _authenticator
    if _authenticator is None:
        _authenticator = RequestAuthenticator(get_rate_limiter())
    return _authenticator


def reset_authenticator() -> None:
    global _authenticator
    _authenticator = None
