"""Bounded in-process key/value cache with a time-to-live."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from cachetools import TTLCache


class LocalCache:
    """Thread-safe string cache that evicts by size and by age."""

    def __init__(
        self,
        capacity: int,
        ttl_seconds: float,
        *,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self._inner: TTLCache[str, str] = TTLCache(
            maxsize=capacity, ttl=ttl_seconds, timer=timer
        )
        self._lock = threading.Lock()
        self.hits = 0

    def get(self, key: str) -> str | None:
        """Return the cached value, or None when absent or expired."""
        with self._lock:
            value = self._inner.get(key)
            if value is not None:
                self.hits += 1
            return value

    def insert(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        with self._lock:
            self._inner[key] = value

    def remove(self, key: str) -> None:
        """Drop ``key`` if it is cached."""
        with self._lock:
            self._inner.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._inner)