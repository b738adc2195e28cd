from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from globenews.config import settings
from globenews.core.logging import get_logger
from globenews.models.news_items import RawItem
from globenews.services.cache_service import CacheKeys, CacheService
from globenews.services.rate_limiting import DEFAULT_MAX_RETRIES, TokenBucket, describe_error, with_retry
from globenews.services.sources.base import (
    QuotaCounter,
    UpstreamPayloadError,
    build_item,
    dump_items,
    load_items,
    open_client,
    parse_iso_datetime,
)

logger = get_logger().bind(module="newsapi_source")


def map_article(article: Dict[str, Any], source_name: str = "NewsAPI") -> Optional[RawItem]:
    timestamp = parse_iso_datetime(article.get("publishedAt"))
    if timestamp is None:
        logger.debug("newsapi_item_skipped", url=article.get("url"), reason="bad_published_at")
        return None
    return build_item(
        source_name,
        title=(article.get("title") or "").strip(),
        summary=article.get("description") or None,
        url=article.get("url") or "",
        timestamp=timestamp,
        image_url=article.get("urlToImage") or None,
    )


class NewsApiSource:
    """
    NewsAPI top headlines. Quota-constrained (free tier: 100 requests/day),
    so results are cached for 30 minutes and the daily counter only moves
    on an actual upstream request.
    """

    name = "NewsAPI"

    def __init__(
        self,
        cache: CacheService,
        *,
        api_key: Optional[str] = settings.NEWSAPI_KEY,
        base_url: str = settings.NEWSAPI_BASE_URL,
        daily_limit: int = settings.NEWSAPI_DAILY_LIMIT,
        quota: Optional[QuotaCounter] = None,
        rate_limiter: Optional[TokenBucket] = None,
        client: Optional[httpx.AsyncClient] = None,
        cache_ttl_s: int = settings.NEWSAPI_CACHE_TTL_S,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ):
        self.cache = cache
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.quota = quota or QuotaCounter(daily_limit, "day", name=self.name)
        self.rate_limiter = rate_limiter or TokenBucket(settings.NEWSAPI_RATE_LIMIT_PER_MIN, 60.0)
        self.cache_ttl_s = cache_ttl_s
        self.max_retries = max_retries
        self._client = client

    async def is_available(self) -> bool:
        if not self.api_key:
            logger.warning("newsapi_key_missing")
            return False
        return self.quota.has_remaining()

    def remaining_requests(self) -> int:
        return self.quota.remaining()

    async def _fetch_headlines_payload(self) -> List[Dict[str, Any]]:
        self.quota.consume()
        await self.rate_limiter.acquire()
        async with open_client(self._client, base_url=self.base_url) as client:
            async def _call() -> httpx.Response:
                response = await client.get(
                    "/top-headlines",
                    params={"language": "en", "pageSize": 100},
                    headers={"X-Api-Key": self.api_key or ""},
                )
                response.raise_for_status()
                return response

            response = await with_retry(_call, "newsapi_fetch", max_retries=self.max_retries)

        payload = response.json()
        if not isinstance(payload, dict) or payload.get("status") != "ok":
            raise UpstreamPayloadError(
                f"NewsAPI returned status={payload.get('status') if isinstance(payload, dict) else None}"
            )
        articles = payload.get("articles") or []
        items = [
            item
            for item in (map_article(a, self.name) for a in articles if isinstance(a, dict))
            if item is not None
        ]
        logger.info("newsapi_articles_mapped", received=len(articles), kept=len(items))
        return dump_items(items)

    async def fetch(self) -> List[RawItem]:
        if not await self.is_available():
            logger.warning("newsapi_not_available", remaining=self.quota.remaining())
            return []
        key = CacheKeys.newsapi_headlines(self.quota.period_key())
        try:
            payload = await self.cache.get_or_compute(
                key, self._fetch_headlines_payload, self.cache_ttl_s
            )
        except Exception as exc:
            logger.warning("newsapi_fetch_failed", error=describe_error(exc))
            return []
        return load_items(payload, self.name)
