"""Per-store request rate limiter.

Each store token gets its own fixed-window counter: the first allowed
request opens a window of ``window_seconds``; up to ``limit`` requests are
allowed inside it; the counter expires with the window.  A burst straddling
a window boundary can briefly exceed the nominal rate.

Counter state lives behind the ``CounterStore`` protocol so a shared backend
can replace the in-process store when running several service instances.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from licensegate.config import settings
from licensegate.errors import RateLimited

logger = logging.getLogger(__name__)


class CounterStore(Protocol):
    """Keyed counters with atomic increment-and-expire semantics."""

    async def increment_below(self, key: str, ceiling: int, window_seconds: int) -> int | None:
        """Increment ``key`` if it is below ``ceiling``.

        Returns the new count, or None when the ceiling was already reached
        (in which case the counter is left unchanged).
        """
        ...

    async def reset(self, key: str | None = None) -> None:
        ...


@dataclass
class _Window:
    count: int
    expires_at: float


class InMemoryCounterStore:
    """Process-local ``CounterStore`` guarded by an asyncio lock."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = asyncio.Lock()

    async def increment_below(self, key: str, ceiling: int, window_seconds: int) -> int | None:
        async with self._lock:
            now = self._clock()
            window = self._windows.get(key)
            if window is None or now >= window.expires_at:
                self._drop_expired(now)
                window = _Window(count=0, expires_at=now + window_seconds)
                self._windows[key] = window
            if window.count >= ceiling:
                return None
            window.count += 1
            return window.count

    async def reset(self, key: str | None = None) -> None:
        async with self._lock:
            if key is None:
                self._windows.clear()
            else:
                self._windows.pop(key, None)

    def _drop_expired(self, now: float) -> None:
        # Caller holds the lock.
        expired = [k for k, w in self._windows.items() if now >= w.expires_at]
        for k in expired:
            del self._windows[k]

    def __len__(self) -> int:
        """Number of tracked windows, expired or not."""
        return len(self._windows)

    def current(self, key: str) -> int:
        """Count in the live window for ``key`` (0 if none or expired)."""
        window = self._windows.get(key)
        if window is None or self._clock() >= window.expires_at:
            return 0
        return window.count


class RateLimiter:
    """Fixed-window request ceiling per store token."""

    def __init__(
        self,
        store: CounterStore,
        limit: int = 60,
        window_seconds: int = 60,
        overrides: dict[str, int] | None = None,
    ):
        self._store = store
        self._limit = limit
        self._window = window_seconds
        self._overrides = dict(overrides or {})

    @property
    def window_seconds(self) -> int:
        return self._window

    def limit_for(self, store_token: str) -> int:
        return self._overrides.get(store_token, self._limit)

    async def check(self, store_token: str) -> int:
        """Count this request against ``store_token``'s window.

        Returns the request's position in the window.

        Raises:
            RateLimited: with ``retry_after`` equal to the window length
        """
        count = await self._store.increment_below(
            f"rate:{store_token}",
            self.limit_for(store_token),
            self._window,
        )
        if count is None:
            logger.warning(f"Rate limit hit for store {store_token[:8]}...")
            raise RateLimited(retry_after=self._window)
        return count


_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    """Return the process-wide ``RateLimiter``, creating it if needed.

    Configured from ``LICENSEGATE_RATE_LIMIT_REQUESTS``,
    ``LICENSEGATE_RATE_LIMIT_WINDOW_SECONDS`` and
    ``LICENSEGATE_RATE_LIMIT_OVERRIDES``.
    """
    global _limiter
    if _limiter is None:
        _limiter = RateLimiter(
            InMemoryCounterStore(),
            limit=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
            overrides=settings.rate_limit_overrides,
        )
    return _limiter


def reset_rate_limiter() -> None:
    """Drop the singleton so the next call rebuilds it (tests)."""
    global _limiter
    _limiter = None
