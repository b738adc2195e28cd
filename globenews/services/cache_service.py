# -*- coding: utf-8 -*-
"""
CacheService — fail-open key/value cache with TTL
- Redis backend (redis.asyncio) for deployments, in-memory backend for tests/dev
- Backend reads are modelled as CacheHit | CacheMiss | CacheBackendError
- No public method raises on backend failure; errors are logged and read as a miss
"""

from __future__ import annotations

import fnmatch
import json
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Tuple, Union

import redis.asyncio as redis_async

from globenews.config import settings
from globenews.core.logging import get_logger

logger = get_logger()

DEFAULT_TTL_S = settings.CACHE_DEFAULT_TTL_S
SCAN_BATCH_SIZE = 500


@dataclass(frozen=True)
class CacheHit:
    value: Any


@dataclass(frozen=True)
class CacheMiss:
    pass


@dataclass(frozen=True)
class CacheBackendError:
    error: str


CacheResult = Union[CacheHit, CacheMiss, CacheBackendError]

MISS = CacheMiss()


class CacheBackend(Protocol):
    async def get(self, key: str) -> Optional[str]: ...
    async def set(self, key: str, payload: str, ttl_s: int) -> None: ...
    async def delete(self, key: str) -> None: ...
    async def delete_matching(self, pattern: str) -> int: ...
    async def ping(self) -> bool: ...


class RedisCacheBackend:
    def __init__(self, url: str, client: Optional[redis_async.Redis] = None):
        self._client = client or redis_async.Redis.from_url(url, decode_responses=True)

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def set(self, key: str, payload: str, ttl_s: int) -> None:
        await self._client.setex(key, ttl_s, payload)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def delete_matching(self, pattern: str) -> int:
        # SCAN instead of KEYS so large keyspaces don't block the server
        deleted = 0
        batch: list[str] = []
        async for key in self._client.scan_iter(match=pattern, count=SCAN_BATCH_SIZE):
            batch.append(key)
            if len(batch) >= SCAN_BATCH_SIZE:
                deleted += await self._client.delete(*batch)
                batch = []
        if batch:
            deleted += await self._client.delete(*batch)
        return deleted

    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()


class InMemoryCacheBackend:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[float, str]] = {}

    async def get(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at, payload = entry
        if expires_at <= self._clock():
            self._data.pop(key, None)
            return None
        return payload

    async def set(self, key: str, payload: str, ttl_s: int) -> None:
        self._data[key] = (self._clock() + ttl_s, payload)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def delete_matching(self, pattern: str) -> int:
        keys = [k for k in self._data if fnmatch.fnmatchcase(k, pattern)]
        for key in keys:
            del self._data[key]
        return len(keys)

    async def ping(self) -> bool:
        return True

    def keys(self) -> list[str]:
        return list(self._data.keys())


def _as_pattern(prefix: str) -> str:
    return prefix if any(ch in prefix for ch in "*?[") else f"{prefix}*"


class CacheService:
    def __init__(self, backend: CacheBackend, default_ttl_s: int = DEFAULT_TTL_S):
        self.backend = backend
        self.default_ttl_s = default_ttl_s

    async def lookup(self, key: str) -> CacheResult:
        try:
            payload = await self.backend.get(key)
        except Exception as exc:
            logger.warning("cache_get_failed", key=key, error=str(exc))
            return CacheBackendError(error=str(exc))
        if payload is None:
            return MISS
        try:
            return CacheHit(value=json.loads(payload))
        except (TypeError, ValueError) as exc:
            logger.warning("cache_payload_invalid", key=key, error=str(exc))
            return CacheBackendError(error=str(exc))

    async def get(self, key: str) -> Any:
        result = await self.lookup(key)
        if isinstance(result, CacheHit):
            return result.value
        return None

    async def set(self, key: str, value: Any, ttl_s: Optional[int] = None) -> bool:
        ttl = ttl_s if ttl_s is not None else self.default_ttl_s
        try:
            payload = json.dumps(value, default=str)
            await self.backend.set(key, payload, ttl)
        except Exception as exc:
            logger.warning("cache_set_failed", key=key, error=str(exc))
            return False
        return True

    async def delete(self, key: str) -> bool:
        try:
            await self.backend.delete(key)
        except Exception as exc:
            logger.warning("cache_delete_failed", key=key, error=str(exc))
            return False
        return True

    async def delete_by_pattern(self, prefix: str) -> int:
        pattern = _as_pattern(prefix)
        try:
            deleted = await self.backend.delete_matching(pattern)
        except Exception as exc:
            logger.warning("cache_delete_pattern_failed", pattern=pattern, error=str(exc))
            return 0
        logger.debug("cache_pattern_invalidated", pattern=pattern, deleted=deleted)
        return deleted

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[Any]],
        ttl_s: Optional[int] = None,
    ) -> Any:
        """
        Return the cached value for `key`, or compute, store and return it.

        Backend failures on either side behave like a miss. Errors raised by
        `compute` itself belong to the caller and propagate.
        """
        result = await self.lookup(key)
        if isinstance(result, CacheHit):
            return result.value
        value = await compute()
        if value is not None:
            await self.set(key, value, ttl_s)
        return value

    async def health_check(self) -> bool:
        try:
            return await self.backend.ping()
        except Exception as exc:
            logger.warning("cache_health_check_failed", error=str(exc))
            return False

    async def close(self) -> None:
        if isinstance(self.backend, RedisCacheBackend):
            await self.backend.close()


class CacheKeys:
    EVENTS_PATTERN = "events:*"
    HEATMAP_PATTERN = "heatmap:*"
    CATEGORIES_SUMMARY = "categories:summary"

    @staticmethod
    def geocoding(name: str) -> str:
        return f"geocoding:{name.strip().lower()}"

    @staticmethod
    def gdelt(kind: str, value: str = "latest") -> str:
        return f"gdelt:{kind}:{value}"

    @staticmethod
    def newsapi_headlines(day: str) -> str:
        return f"newsapi:headlines:{day}"

    @staticmethod
    def eventregistry_recent(hour_key: str) -> str:
        return f"eventregistry:recent:{hour_key}"

    @staticmethod
    def rss_feed(feed_name: str) -> str:
        return "rss:" + "_".join(feed_name.lower().split())

    @staticmethod
    def polymarket_markets() -> str:
        return "polymarket:markets"


def build_cache_service(redis_url: Optional[str] = None) -> CacheService:
    url = redis_url if redis_url is not None else settings.REDIS_URL
    if url:
        return CacheService(RedisCacheBackend(url))
    logger.info("cache_backend_in_memory")
    return CacheService(InMemoryCacheBackend())
