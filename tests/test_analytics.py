from datetime import datetime, timezone

import pytest

from hyperlinkr.analytics import (
    RETENTION_SECONDS,
    AnalyticsService,
    AnalyticsStore,
    ClickEvent,
)
from hyperlinkr.clock import FixedClock
from hyperlinkr.config import Settings
from hyperlinkr.errors import AnalyticsError

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
TS = int(NOW.timestamp())


class FlakyStore(AnalyticsStore):
    def __init__(self, fail=True):
        super().__init__()
        self.fail = fail
        self.batches = []

    async def zadd_batch(self, operations, ttl_seconds):
        operations = list(operations)
        if self.fail:
            raise AnalyticsError("down")
        self.batches.append((len(operations), ttl_seconds))
        await super().zadd_batch(operations, ttl_seconds)

    async def zrange(self, key, start, end):
        if self.fail:
            raise AnalyticsError("down")
        return await super().zrange(key, start, end)


def make_service(primary=None, fallback=None, **kwargs):
    return AnalyticsService(
        primary=primary or AnalyticsStore(),
        fallback=fallback,
        clock=FixedClock(NOW),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_store_zrange_filters_and_orders():
    store = AnalyticsStore()
    await store.zadd_batch([("k", 30, 3), ("k", 10, 1), ("k", 20, 2)], 0)
    assert await store.zrange("k", 10, 20) == [(10, 1), (20, 2)]
    assert await store.zrange("other", 0, 100) == []


@pytest.mark.asyncio
async def test_store_ttl_expiry():
    now = [100.0]
    store = AnalyticsStore(timer=lambda: now[0])
    await store.zadd_batch([("short", 5, 5)], 10)
    await store.zadd_batch([("forever", 5, 5)], 0)
    now[0] = 111.0
    assert await store.zrange("short", 0, 10) == []
    assert await store.zrange("forever", 0, 10) == [(5, 5)]


@pytest.mark.asyncio
async def test_record_and_drain_writes_to_primary():
    primary = AnalyticsStore()
    service = make_service(primary)
    assert await service.record_click("abc", "0.0.0.0") is True
    assert service.pending == 1
    assert await service.drain() == 1
    assert service.pending == 0
    assert await primary.zrange("stats:abc", TS, TS) == [(TS, TS)]


@pytest.mark.asyncio
async def test_queue_full_drops_click():
    service = make_service(max_queue_size=2)
    assert await service.record_click("a", "ip")
    assert await service.record_click("b", "ip")
    assert await service.record_click("c", "ip") is False
    assert service.dropped == 1
    assert service.recorded == 2


@pytest.mark.asyncio
async def test_batches_are_limited_by_batch_size():
    primary = FlakyStore(fail=False)
    service = make_service(primary, batch_size=2)
    for code in ("a", "b", "c"):
        await service.record_click(code, "ip")
    assert await service.drain() == 3
    assert primary.batches == [(2, RETENTION_SECONDS), (1, RETENTION_SECONDS)]


@pytest.mark.asyncio
async def test_fallback_receives_batches_without_expiry():
    fallback = FlakyStore(fail=False)
    service = make_service(AnalyticsStore(), fallback)
    await service.record_click("x", "ip")
    await service.drain()
    assert fallback.batches == [(1, 0)]


@pytest.mark.asyncio
async def test_primary_failure_with_fallback_success_clears_batch():
    fallback = AnalyticsStore()
    service = make_service(FlakyStore(fail=True), fallback)
    await service.record_click("x", "ip")
    assert await service.drain() == 1
    assert service.errors["flush_primary"] == 1
    assert await fallback.zrange("stats:x", TS, TS) == [(TS, TS)]


@pytest.mark.asyncio
async def test_both_failing_keeps_batch_for_retry():
    primary = FlakyStore(fail=True)
    fallback = FlakyStore(fail=True)
    service = make_service(primary, fallback)
    await service.record_click("x", "ip")
    assert await service.drain() == 0
    assert service.errors["flush_failed"] == 1
    assert service.pending == 1
    primary.fail = False
    assert await service.drain() == 1
    assert service.pending == 0


@pytest.mark.asyncio
async def test_get_analytics_from_primary():
    primary = AnalyticsStore()
    await primary.zadd_batch([("stats:c", 7, 7)], 0)
    service = make_service(primary)
    assert await service.get_analytics("c", 0, 10) == [(7, 7)]


@pytest.mark.asyncio
async def test_get_analytics_restores_from_fallback():
    primary = AnalyticsStore()
    fallback = AnalyticsStore()
    await fallback.zadd_batch([("stats:c", 7, 7)], 0)
    service = make_service(primary, fallback)
    assert await service.get_analytics("c", 0, 10) == [(7, 7)]
    assert await primary.zrange("stats:c", 0, 10) == [(7, 7)]


@pytest.mark.asyncio
async def test_get_analytics_fallback_error_propagates():
    service = make_service(AnalyticsStore(), FlakyStore(fail=True))
    with pytest.raises(AnalyticsError):
        await service.get_analytics("c", 0, 10)
    assert service.errors["zrange_fallback"] == 1


@pytest.mark.asyncio
async def test_get_analytics_without_fallback_is_empty():
    service = make_service(FlakyStore(fail=True))
    assert await service.get_analytics("c", 0, 10) == []


@pytest.mark.asyncio
async def test_start_and_shutdown_flush_queue():
    primary = AnalyticsStore()
    service = make_service(primary, flush_interval_ms=60_000)
    task = service.start()
    await service.record_click("late", "ip")
    await service.shutdown()
    assert task.done()
    assert await primary.zrange("stats:late", TS, TS) == [(TS, TS)]
    await service.shutdown()
    assert service.flushed == 1


@pytest.mark.asyncio
async def test_shutdown_without_task_drains():
    primary = AnalyticsStore()
    service = make_service(primary)
    await service.record_click("q", "ip", referrer="r", country="DE")
    await service.shutdown()
    assert await primary.zrange("stats:q", TS, TS) == [(TS, TS)]


def test_from_settings_uses_configuration():
    settings = Settings()
    settings.cache.use_sled = False
    settings.analytics.max_queue_size = None
    service = AnalyticsService.from_settings(
        settings, AnalyticsStore(), AnalyticsStore(), FixedClock(NOW)
    )
    assert service.fallback is None
    assert service.max_queue_size == 100_000
    assert service.batch_size == settings.analytics.max_batch_size
    assert service.flush_interval_ms == settings.cache.sled_flush_ms


def test_click_event_defaults():
    event = ClickEvent(code="c", timestamp=1, ip="1.2.3.4")
    assert (event.referrer, event.country, event.device_type, event.browser) == (
        None,
        None,
        None,
        None,
    )