"""Per-IP and per-user request rate limiting."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any

from .config import Settings
from .errors import RateLimitExceeded

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 60


@dataclass
class RequestContext:
    """What is known about the client making a request."""

    user_id: str | None = None
    email: str | None = None
    username: str | None = None
    is_admin: bool = False
    ip: str | None = None
    referrer: str | None = None
    user_agent: str | None = None
    browser: str | None = None
    os: str | None = None
    device_type: str | None = None
    country: str | None = None
    continent_code: str | None = None
    city_name: str | None = None
    timezone: str | None = None
    latitude: float | None = None
    longitude: float | None = None


class RateLimitBackend:
    """Fixed-window request counters kept in memory.

    The first request in a window starts a counter that expires after the
    window; once the counter has reached the limit, requests are refused until
    it expires. Subclass to keep the counters in a shared store.
    """

    def __init__(self, *, timer: Callable[[], float] = time.monotonic) -> None:
        self._timer = timer
        self._counters: dict[str, tuple[int, float]] = {}
        self._lock = asyncio.Lock()

    async def rate_limit(self, key: str, limit: int, window: int) -> bool:
        """Count one request against ``key``; return whether it is allowed."""
        async with self._lock:
            now = self._timer()
            entry = self._counters.get(key)
            if entry is not None and entry[1] <= now:
                del self._counters[key]
                entry = None
            if entry is None:
                self._counters[key] = (1, now + window)
                return True
            count, expires_at = entry
            if count >= limit:
                return False
            self._counters[key] = (count + 1, expires_at)
            return True


def endpoint_for(path: str) -> str:
    """Classify a request path as ``shorten``, ``redirect`` or ``other``."""
    if path.startswith("/v1/shorten"):
        return "shorten"
    if path.startswith("/v1/redirect"):
        return "redirect"
    return "other"


def rate_limit_response(window: int) -> Any:
    """Return the ``(status, headers, body)`` sent when a limit is exceeded."""
    return HTTPStatus.TOO_MANY_REQUESTS, {"Retry-After": str(window)}, b""


class RateLimiter:
    """Applies the configured limits to requests, first by IP, then by user."""

    def __init__(self, settings: Settings, backend: RateLimitBackend) -> None:
        self._config = settings.rate_limit
        self._backend = backend
        self.exceeded = 0

    async def check(self, key: str, limit: int, window: int) -> bool:
        """Count one request against ``key``; return whether it is allowed."""
        return await self._backend.rate_limit(key, limit, window)

    def _refuse(self, window: int) -> RateLimitExceeded:
        self.exceeded += 1
        return RateLimitExceeded(rate_limit_response(window))

    async def enforce(self, path: str, context: RequestContext) -> None:
        """Raise RateLimitExceeded if the request to ``path`` is over a limit."""
        endpoint = endpoint_for(path)
        ip = context.ip or "unknown"
        if endpoint == "shorten":
            limit = self._config.shorten_requests_per_minute
        else:
            limit = self._config.redirect_requests_per_minute
        window = self._config.window_size_seconds or DEFAULT_WINDOW_SECONDS

        if not await self.check(f"rate:{endpoint}:ip:{ip}", limit, window):
            logger.warning("IP rate limit exceeded for %s on %s", ip, endpoint)
            raise self._refuse(window)

        if context.user_id is not None:
            user_key = f"rate:{endpoint}:user:{context.user_id}"
            if not await self.check(user_key, limit, window):
                logger.warning(
                    "User rate limit exceeded for %s on %s", context.user_id, endpoint
                )
                raise self._refuse(window)