"""Click analytics: a bounded in-memory queue flushed in batches to sorted sets."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import Counter, deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from .clock import Clock, SystemClock
from .config import Settings
from .errors import AppError

logger = logging.getLogger(__name__)

DEFAULT_MAX_QUEUE_SIZE = 100_000
RETENTION_SECONDS = 90 * 24 * 3600

_SHUTDOWN = object()


@dataclass(frozen=True)
class ClickEvent:
    """One recorded visit to a short code."""

    code: str
    timestamp: int
    ip: str
    referrer: str | None = None
    country: str | None = None
    device_type: str | None = None
    browser: str | None = None


class AnalyticsStore:
    """Sorted sets of ``(score, member)`` pairs kept in memory.

    A positive ``ttl_seconds`` makes a key expire that long after its last
    write; zero keeps it forever. Subclass to keep the sets in a shared store.
    """

    def __init__(self, *, timer: Callable[[], float] = time.monotonic) -> None:
        self._timer = timer
        self._sets: dict[str, dict[int, int]] = {}
        self._expiry: dict[str, float] = {}
        self._lock = threading.Lock()

    def _purge(self, key: str, now: float) -> None:
        expires_at = self._expiry.get(key)
        if expires_at is not None and expires_at <= now:
            self._sets.pop(key, None)
            del self._expiry[key]

    async def zadd_batch(
        self, operations: Iterable[tuple[str, int, int]], ttl_seconds: int
    ) -> None:
        """Add each ``(key, score, member)``; a member's score is replaced."""
        with self._lock:
            now = self._timer()
            for key, score, member in operations:
                self._purge(key, now)
                self._sets.setdefault(key, {})[member] = score
                if ttl_seconds > 0:
                    self._expiry[key] = now + ttl_seconds

    async def zrange(self, key: str, start: int, end: int) -> list[tuple[int, int]]:
        """Return ``(score, member)`` pairs with ``start <= score <= end``, ordered."""
        with self._lock:
            self._purge(key, self._timer())
            members = self._sets.get(key, {})
            return sorted(
                (score, member)
                for member, score in members.items()
                if start <= score <= end
            )


class AnalyticsService:
    """Queues clicks and writes them in batches to a primary and a fallback store."""

    def __init__(
        self,
        *,
        primary: AnalyticsStore,
        fallback: AnalyticsStore | None = None,
        clock: Clock | None = None,
        max_queue_size: int = DEFAULT_MAX_QUEUE_SIZE,
        batch_size: int = 10_000,
        flush_interval_ms: int = 600_000,
    ) -> None:
        self.primary = primary
        self.fallback = fallback
        self.clock = clock or SystemClock()
        self.max_queue_size = max_queue_size
        self.batch_size = batch_size
        self.flush_interval_ms = flush_interval_ms
        self._queue: deque[object] = deque()
        self._batch: list[tuple[str, int]] = []
        self._task: asyncio.Task[None] | None = None
        self._wake: asyncio.Event | None = None
        self._is_shutdown = False
        self.recorded = 0
        self.dropped = 0
        self.flushed = 0
        self.errors: Counter[str] = Counter()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        primary: AnalyticsStore,
        fallback: AnalyticsStore | None = None,
        clock: Clock | None = None,
    ) -> AnalyticsService:
        """Build the service from settings; the fallback is used only if enabled."""
        return cls(
            primary=primary,
            fallback=fallback if settings.cache.use_sled else None,
            clock=clock,
            max_queue_size=settings.analytics.max_queue_size or DEFAULT_MAX_QUEUE_SIZE,
            batch_size=settings.analytics.max_batch_size,
            flush_interval_ms=settings.cache.sled_flush_ms,
        )

    @property
    def pending(self) -> int:
        """Number of clicks queued or held in an unflushed batch."""
        return sum(isinstance(msg, ClickEvent) for msg in self._queue) + len(self._batch)

    async def record_click(
        self,
        code: str,
        ip: str,
        referrer: str | None = None,
        country: str | None = None,
        device_type: str | None = None,
        browser: str | None = None,
    ) -> bool:
        """Queue a click; return False if it was dropped because the queue is full."""
        if len(self._queue) >= self.max_queue_size:
            logger.error("Dropped click for code %s: queue full", code)
            self.dropped += 1
            return False
        self._queue.append(
            ClickEvent(
                code=code,
                timestamp=int(self.clock.now().timestamp()),
                ip=ip,
                referrer=referrer,
                country=country,
                device_type=device_type,
                browser=browser,
            )
        )
        self.recorded += 1
        return True

    async def get_analytics(self, code: str, start: int, end: int) -> list[tuple[int, int]]:
        """Return click ``(score, member)`` pairs for ``code`` between two timestamps.

        Falls back to the fallback store when the primary has nothing, and copies
        what it finds there back into the primary.
        """
        key = f"stats:{code}"
        try:
            data = await self.primary.zrange(key, start, end)
        except AppError:
            data = []
        if data:
            return data
        if self.fallback is None:
            return []
        try:
            data = await self.fallback.zrange(key, start, end)
        except AppError:
            self.errors["zrange_fallback"] += 1
            raise
        if not data:
            return []
        operations = [(key, score, member) for score, member in data]
        try:
            await self.primary.zadd_batch(operations, RETENTION_SECONDS)
        except AppError as exc:
            logger.error("Failed to restore analytics to primary store: %s", exc)
            self.errors["restore"] += 1
        return data

    async def _flush_batch(self) -> int:
        if not self._batch:
            return 0
        operations = [(f"stats:{code}", ts, ts) for code, ts in self._batch]

        primary_ok = True
        try:
            await self.primary.zadd_batch(operations, RETENTION_SECONDS)
        except AppError as exc:
            primary_ok = False
            logger.error("Failed to flush analytics to primary store: %s", exc)
            self.errors["flush_primary"] += 1

        fallback_ok = True
        if self.fallback is not None:
            try:
                await self.fallback.zadd_batch(operations, 0)
            except AppError as exc:
                fallback_ok = False
                logger.error("Failed to flush analytics to fallback store: %s", exc)
                self.errors["flush_fallback"] += 1

        if not (primary_ok or fallback_ok):
            self.errors["flush_failed"] += 1
            return 0
        count = len(self._batch)
        logger.info("Flushed %d analytics events", count)
        self.flushed += count
        self._batch.clear()
        return count

    async def _process_queue(self) -> tuple[int, bool]:
        written = 0
        while self._queue:
            message = self._queue.popleft()
            if message is _SHUTDOWN:
                written += await self._flush_batch()
                return written, True
            assert isinstance(message, ClickEvent)
            self._batch.append((message.code, message.timestamp))
            if len(self._batch) >= self.batch_size:
                written += await self._flush_batch()
        written += await self._flush_batch()
        return written, False

    async def drain(self) -> int:
        """Write every queued click now; return how many were written."""
        written, _ = await self._process_queue()
        return written

    async def _run(self) -> None:
        assert self._wake is not None
        while True:
            _, stop = await self._process_queue()
            if stop:
                return
            try:
                await asyncio.wait_for(
                    self._wake.wait(), timeout=self.flush_interval_ms / 1000
                )
            except asyncio.TimeoutError:
                pass
            self._wake.clear()

    def start(self) -> asyncio.Task[None]:
        """Start the background flush task in the running event loop."""
        if self._task is None:
            self._wake = asyncio.Event()
            self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    async def shutdown(self) -> None:
        """Flush everything still queued and stop the flush task; idempotent."""
        if self._is_shutdown:
            return
        self._is_shutdown = True
        task, self._task = self._task, None
        if task is None:
            await self.drain()
            return
        self._queue.append(_SHUTDOWN)
        if self._wake is not None:
            self._wake.set()
        try:
            await task
        except Exception as exc:  # noqa: BLE001 - reported, not propagated
            logger.error("Flush task failed: %s", exc)
            self.errors["shutdown"] += 1