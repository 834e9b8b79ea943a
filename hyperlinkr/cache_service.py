"""Tiered URL cache: two local caches, a Bloom filter and key/value backends."""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections import Counter
from collections.abc import Iterable
from typing import Any

from .bloom import ShardedBloom
from .config import Settings
from .errors import AppError, InternalError, NotFound
from .local_cache import LocalCache

logger = logging.getLogger(__name__)

_FLUSH_PATTERN = "url:*"
_FLUSH_SCAN_COUNT = 1000
_WARMUP_CHUNK = 1000


class KeyValueBackend(ABC):
    """A remote or persistent string store behind the local caches."""

    @abstractmethod
    async def get(self, key: str) -> str:
        """Return the value stored under ``key``; raise an AppError if absent."""

    @abstractmethod
    async def set_ex(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store ``value`` under ``key``, expiring after ``ttl_seconds``."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key`` from the store."""

    @abstractmethod
    async def scan_keys(self, pattern: str, count: int) -> list[str]:
        """Return up to ``count`` keys matching the glob ``pattern``."""


class CacheService:
    """Looks keys up in L1, then L2, then the primary store, then the fallback.

    The Bloom filter short-circuits lookups of keys that were never stored.
    Values found in a slower tier are copied into the faster ones.
    """

    def __init__(
        self,
        *,
        l1: LocalCache,
        l2: LocalCache,
        bloom: ShardedBloom,
        primary: KeyValueBackend,
        fallback: KeyValueBackend | None = None,
        ttl_seconds: int,
        flush_interval_ms: int,
    ) -> None:
        self.l1 = l1
        self.l2 = l2
        self.bloom = bloom
        self.primary = primary
        self.fallback = fallback
        self.ttl_seconds = ttl_seconds
        self.flush_interval_ms = flush_interval_ms
        self.hits: Counter[str] = Counter()
        self.flush_count = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        primary: KeyValueBackend,
        fallback: KeyValueBackend | None = None,
    ) -> CacheService:
        """Build the service from settings; the fallback is used only if enabled."""
        cache = settings.cache
        return cls(
            l1=LocalCache(cache.l1_capacity, cache.ttl_seconds),
            l2=LocalCache(cache.l2_capacity, cache.ttl_seconds),
            bloom=ShardedBloom(cache.bloom_bits, cache.bloom_expected),
            primary=primary,
            fallback=fallback if cache.use_sled else None,
            ttl_seconds=cache.ttl_seconds,
            flush_interval_ms=cache.sled_flush_ms,
        )

    async def get(self, key: str) -> str:
        """Return the value for ``key``; raise NotFound when no tier has it."""
        value = self.l1.get(key)
        if value is not None:
            self.hits["l1"] += 1
            return value

        if not self.bloom.contains(key):
            raise NotFound("Key not found")

        value = self.l2.get(key)
        if value is not None:
            self.hits["l2"] += 1
            self.l1.insert(key, value)
            return value

        try:
            value = await self.primary.get(key)
        except AppError:
            pass
        else:
            self.hits["primary"] += 1
            self.l1.insert(key, value)
            self.l2.insert(key, value)
            return value

        if self.fallback is not None:
            value = await self.fallback.get(key)
            self.hits["fallback"] += 1
            self.l1.insert(key, value)
            self.l2.insert(key, value)
            self.bloom.insert(key)
            await self.primary.set_ex(key, value, self.ttl_seconds)
            return value

        raise NotFound("Key not found")

    async def insert(self, key: str, value: str) -> None:
        """Store ``value`` in the primary store first, then in every other tier."""
        await self.primary.set_ex(key, value, self.ttl_seconds)
        self.l1.insert(key, value)
        self.l2.insert(key, value)
        self.bloom.insert(key)
        if self.fallback is not None:
            await self.fallback.set_ex(key, value, self.ttl_seconds)

    async def delete(self, key: str) -> None:
        """Remove ``key`` from every tier; the Bloom filter keeps it."""
        self.l1.remove(key)
        self.l2.remove(key)
        removals = [self.primary.delete(key)]
        if self.fallback is not None:
            removals.append(self.fallback.delete(key))
        await asyncio.gather(*removals)

    def contains_key(self, key: str) -> bool:
        """Return False if ``key`` was certainly never stored."""
        return self.bloom.contains(key)

    async def flush_to_fallback(self) -> int:
        """Copy URL keys from the primary store to the fallback; return how many."""
        fallback = self.fallback
        if fallback is None:
            return 0
        keys = await self.primary.scan_keys(_FLUSH_PATTERN, _FLUSH_SCAN_COUNT)

        async def copy(key: str) -> bool:
            try:
                value = await self.primary.get(key)
            except AppError:
                return False
            await fallback.set_ex(key, value, self.ttl_seconds)
            return True

        copied = await asyncio.gather(*(copy(key) for key in keys))
        count = sum(copied)
        logger.info("Flushed %d keys to fallback store", count)
        return count

    async def run_flush_loop(self) -> None:
        """Flush to the fallback now and then every flush interval, until cancelled."""
        if self.fallback is None:
            return
        while True:
            try:
                await self.flush_to_fallback()
            except AppError as exc:
                logger.error("Flush to fallback store failed: %s", exc)
            self.flush_count += 1
            await asyncio.sleep(self.flush_interval_ms / 1000)

    @staticmethod
    def _list_key(user_id: str | None, page: int, per_page: int) -> str:
        return f"urls:{user_id or 'all'}:{page}:{per_page}"

    async def list_urls_cache(
        self, user_id: str | None, page: int, per_page: int
    ) -> Any | None:
        """Return a cached page of URLs, or None when that page is not cached."""
        cached = self.l2.get(self._list_key(user_id, page, per_page))
        if cached is None:
            return None
        try:
            return json.loads(cached)
        except ValueError as exc:
            raise InternalError(str(exc)) from exc

    async def cache_list_urls(
        self, user_id: str | None, page: int, per_page: int, result: Any
    ) -> None:
        """Cache a page of URLs in L2."""
        try:
            serialized = json.dumps(result)
        except (TypeError, ValueError) as exc:
            raise InternalError(str(exc)) from exc
        self.l2.insert(self._list_key(user_id, page, per_page), serialized)

    async def _warm_key(self, key: str) -> bool:
        try:
            value = await self.primary.get(key)
        except AppError:
            if self.fallback is None:
                return False
            try:
                value = await self.fallback.get(key)
            except AppError:
                return False
            try:
                await self.primary.set_ex(key, value, self.ttl_seconds)
            except AppError:
                pass
        self.l2.insert(key, value)
        self.l1.insert(key, value)
        self.bloom.insert(key)
        self.hits["warmup"] += 1
        return True

    async def warmup(self, keys: Iterable[str]) -> int:
        """Load ``keys`` into the local tiers; return how many were found."""
        pending = list(keys)
        loaded = 0
        for start in range(0, len(pending), _WARMUP_CHUNK):
            chunk = pending[start:start + _WARMUP_CHUNK]
            results = await asyncio.gather(*(self._warm_key(key) for key in chunk))
            loaded += sum(results)
        logger.info("Cache warmup loaded %d keys", loaded)
        return loaded