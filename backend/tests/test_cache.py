"""Tests for the plan response cache and the background task registry."""

import asyncio

import pytest

from transitnav.services.background import BackgroundTaskRegistry
from transitnav.services.cache import InMemoryTTLCache, NullCache, build_response_cache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


# =============================================================================
# Response cache
# =============================================================================

class TestInMemoryTTLCache:

    async def test_set_then_get(self):
        cache = InMemoryTTLCache()
        await cache.set("plan:a:b", '{"routes": []}', ttl_seconds=60)
        assert await cache.get("plan:a:b") == '{"routes": []}'

    async def test_miss_returns_none(self):
        assert await InMemoryTTLCache().get("missing") is None

    async def test_entries_expire(self):
        clock = FakeClock()
        cache = InMemoryTTLCache(clock=clock)
        await cache.set("k", "v", ttl_seconds=30)

        clock.now += 29
        assert await cache.get("k") == "v"

        clock.now += 2
        assert await cache.get("k") is None
        assert len(cache) == 0

    async def test_oldest_entry_evicted_when_full(self):
        cache = InMemoryTTLCache(max_entries=2)
        await cache.set("a", "1")
        await cache.set("b", "2")
        await cache.set("c", "3")

        assert await cache.get("a") is None
        assert await cache.get("b") == "2"
        assert await cache.get("c") == "3"

    async def test_ping(self):
        assert await InMemoryTTLCache().ping() is True
        assert InMemoryTTLCache().backend == "memory"


class TestNullCache:

    async def test_never_stores(self):
        cache = NullCache()
        await cache.set("k", "v")
        assert await cache.get("k") is None
        assert cache.backend == "none"


class TestBuildResponseCache:

    def test_disabled(self):
        from transitnav.config import Settings

        assert isinstance(build_response_cache(Settings(route_cache_enabled=False)), NullCache)

    def test_memory_without_redis_url(self):
        from transitnav.config import Settings

        cache = build_response_cache(Settings(redis_url="", route_cache_max_entries=5))
        assert isinstance(cache, InMemoryTTLCache)
        assert cache.max_entries == 5


# =============================================================================
# Background tasks
# =============================================================================

class TestBackgroundTaskRegistry:

    async def test_drain_waits_for_tasks(self):
        registry = BackgroundTaskRegistry()
        done = []

        async def work():
            await asyncio.sleep(0.01)
            done.append(True)

        registry.spawn(work(), name="work")
        assert registry.pending == 1
        await registry.drain()
        assert done == [True]
        assert registry.pending == 0

    async def test_failures_are_absorbed(self, caplog):
        registry = BackgroundTaskRegistry()

        async def boom():
            raise RuntimeError("counter update failed")

        registry.spawn(boom(), name="boom")
        await registry.drain()
        assert registry.pending == 0
        assert "counter update failed" in caplog.text

    async def test_drain_cancels_slow_tasks(self):
        registry = BackgroundTaskRegistry()
        task = registry.spawn(asyncio.sleep(10), name="slow")
        await registry.drain(timeout=0.01)
        assert task.cancelled()

    async def test_drain_with_nothing_pending(self):
        await BackgroundTaskRegistry().drain()
