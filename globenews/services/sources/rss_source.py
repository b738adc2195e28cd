from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Sequence

import feedparser
import httpx

from globenews.config import RssFeedConfig, settings
from globenews.core.logging import get_logger
from globenews.models.news_items import RawItem
from globenews.services.cache_service import CacheKeys, CacheService
from globenews.services.rate_limiting import TokenBucket, describe_error, with_retry
from globenews.services.rss_normalization import detect_feed_type, normalize_feed_entries
from globenews.services.sources.base import dump_items, load_items, open_client

logger = get_logger().bind(module="rss_source")

RSS_MAX_RETRIES = 2
DEFAULT_MAX_CONCURRENCY = 5


class RssSource:
    """
    Configured RSS/Atom feeds, fetched in parallel and cached per feed for
    ten minutes. A failing feed contributes nothing; the others still count.
    """

    name = "RSS"

    def __init__(
        self,
        cache: CacheService,
        *,
        feeds: Optional[Sequence[RssFeedConfig]] = None,
        rate_limiter: Optional[TokenBucket] = None,
        client: Optional[httpx.AsyncClient] = None,
        cache_ttl_s: int = settings.RSS_CACHE_TTL_S,
        max_retries: int = RSS_MAX_RETRIES,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        self.cache = cache
        self.feeds = list(feeds if feeds is not None else settings.RSS_FEEDS)
        # one bucket shared by every feed
        self.rate_limiter = rate_limiter or TokenBucket(settings.RSS_RATE_LIMIT_PER_MIN, 60.0)
        self.cache_ttl_s = cache_ttl_s
        self.max_retries = max_retries
        self._client = client
        self._sem = asyncio.Semaphore(max(1, max_concurrency))

    async def is_available(self) -> bool:
        return bool(self.feeds)

    async def _download(self, feed: RssFeedConfig) -> bytes:
        await self.rate_limiter.acquire()
        async with open_client(self._client) as client:
            async def _call() -> httpx.Response:
                async with self._sem:
                    response = await client.get(
                        feed.url, headers={"User-Agent": settings.HTTP_USER_AGENT}
                    )
                response.raise_for_status()
                return response

            response = await with_retry(_call, f"rss_fetch:{feed.name}", max_retries=self.max_retries)
        return response.content

    async def _fetch_feed_payload(self, feed: RssFeedConfig) -> List[Dict[str, Any]]:
        raw = await self._download(feed)
        parsed = feedparser.parse(raw)
        items, errors = normalize_feed_entries(parsed, feed.name)
        for err in errors:
            logger.debug(
                "rss_entry_skipped",
                feed=feed.name,
                error=str(err),
                entry_link=err.entry_raw.get("link"),
            )
        logger.info(
            "rss_feed_parsed",
            feed=feed.name,
            feed_type=detect_feed_type(parsed),
            items=len(items),
            errors=len(errors),
        )
        return dump_items(items)

    async def fetch_feed(self, feed: RssFeedConfig) -> List[RawItem]:
        try:
            payload = await self.cache.get_or_compute(
                CacheKeys.rss_feed(feed.name),
                lambda: self._fetch_feed_payload(feed),
                self.cache_ttl_s,
            )
        except Exception as exc:
            logger.warning("rss_feed_failed", feed=feed.name, url=feed.url, error=describe_error(exc))
            return []
        return load_items(payload, feed.name)

    async def fetch(self) -> List[RawItem]:
        results = await asyncio.gather(*(self.fetch_feed(feed) for feed in self.feeds))
        items = [item for batch in results for item in batch]
        logger.info("rss_fetch_completed", feeds=len(self.feeds), items=len(items))
        return items
