from __future__ import annotations

import pytest

from globenews.services.cache_service import (
    CacheBackendError,
    CacheHit,
    CacheKeys,
    CacheMiss,
    CacheService,
    InMemoryCacheBackend,
)
from tests.fixtures import FakeClock


class BrokenBackend:
    async def get(self, key):
        raise ConnectionError("redis down")

    async def set(self, key, payload, ttl_s):
        raise ConnectionError("redis down")

    async def delete(self, key):
        raise ConnectionError("redis down")

    async def delete_matching(self, pattern):
        raise ConnectionError("redis down")

    async def ping(self):
        raise ConnectionError("redis down")


@pytest.mark.asyncio
async def test_set_get_and_ttl_expiry():
    clock = FakeClock()
    cache = CacheService(InMemoryCacheBackend(clock=clock))

    assert await cache.set("geocoding:paris", {"lat": 48.8566, "lng": 2.3522}, ttl_s=60) is True
    assert await cache.get("geocoding:paris") == {"lat": 48.8566, "lng": 2.3522}

    clock.now = 61
    assert await cache.get("geocoding:paris") is None
    assert isinstance(await cache.lookup("geocoding:paris"), CacheMiss)


@pytest.mark.asyncio
async def test_get_or_compute_computes_once():
    cache = CacheService(InMemoryCacheBackend())
    calls = {"n": 0}

    async def compute():
        calls["n"] += 1
        return [1, 2, 3]

    first = await cache.get_or_compute("gdelt:artlist:latest", compute, ttl_s=300)
    second = await cache.get_or_compute("gdelt:artlist:latest", compute, ttl_s=300)

    assert first == second == [1, 2, 3]
    assert calls["n"] == 1
    assert isinstance(await cache.lookup("gdelt:artlist:latest"), CacheHit)


@pytest.mark.asyncio
async def test_get_or_compute_propagates_compute_errors_and_stores_nothing():
    backend = InMemoryCacheBackend()
    cache = CacheService(backend)

    async def boom():
        raise RuntimeError("upstream failed")

    with pytest.raises(RuntimeError):
        await cache.get_or_compute("newsapi:headlines:2025-03-01", boom)
    assert backend.keys() == []


@pytest.mark.asyncio
async def test_backend_errors_fail_open():
    cache = CacheService(BrokenBackend())

    assert await cache.get("events:all") is None
    assert isinstance(await cache.lookup("events:all"), CacheBackendError)
    assert await cache.set("events:all", [1]) is False
    assert await cache.delete("events:all") is False
    assert await cache.delete_by_pattern("events:") == 0
    assert await cache.health_check() is False

    async def compute():
        return {"fresh": True}

    assert await cache.get_or_compute("events:all", compute) == {"fresh": True}


@pytest.mark.asyncio
async def test_corrupt_payload_reads_as_error_not_exception():
    backend = InMemoryCacheBackend()
    await backend.set("heatmap:global", "{not json", 60)
    cache = CacheService(backend)

    result = await cache.lookup("heatmap:global")

    assert isinstance(result, CacheBackendError)
    assert await cache.get("heatmap:global") is None


@pytest.mark.asyncio
async def test_delete_by_pattern_only_touches_matching_namespace():
    backend = InMemoryCacheBackend()
    cache = CacheService(backend)
    for key in ("events:all", "events:conflict", "heatmap:global", "geocoding:paris"):
        await cache.set(key, 1)

    assert await cache.delete_by_pattern("events:") == 2
    assert await cache.delete_by_pattern(CacheKeys.HEATMAP_PATTERN) == 1
    assert backend.keys() == ["geocoding:paris"]


def test_cache_keys():
    assert CacheKeys.geocoding("  Paris ") == "geocoding:paris"
    assert CacheKeys.rss_feed("BBC World") == "rss:bbc_world"
    assert CacheKeys.newsapi_headlines("2025-03-01") == "newsapi:headlines:2025-03-01"
    assert CacheKeys.gdelt("artlist") == "gdelt:artlist:latest"
