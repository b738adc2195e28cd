# -*- coding: utf-8 -*-
"""
GdeltSource — GDELT DOC 2.0 article list adapter
- No credential; availability is a rate-limited probe query
- Own TokenBucket sized from GDELT_RATE_LIMIT_PER_MIN
- Results cached for a few minutes (the feed turns over every 15 minutes)
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from globenews.config import settings
from globenews.core.logging import get_logger
from globenews.models.news_items import RawItem, RawLocation
from globenews.services.cache_service import CacheKeys, CacheService
from globenews.services.rate_limiting import DEFAULT_MAX_RETRIES, TokenBucket, describe_error, with_retry
from globenews.services.sources.base import build_item, dump_items, finite_or_none, load_items, open_client, utc_now

logger = get_logger().bind(module="gdelt_source")

DOC_PATH = "/doc/doc"
LATEST_QUERY = "sourcecountry:US OR sourcecountry:UK OR sourcecountry:AU OR sourcelang:english"
_NON_DIGIT_RE = re.compile(r"\D")


def parse_seendate(value: Optional[str]) -> datetime:
    """
    GDELT seendate is YYYYMMDDHHMMSS, sometimes as 20240101T120000Z.
    Unparseable values fall back to the current time.
    """
    digits = _NON_DIGIT_RE.sub("", value or "")
    if len(digits) < 8:
        return utc_now()
    try:
        return datetime(
            int(digits[0:4]),
            int(digits[4:6]),
            int(digits[6:8]),
            int(digits[8:10] or 0),
            int(digits[10:12] or 0),
            int(digits[12:14] or 0),
            tzinfo=timezone.utc,
        )
    except ValueError:
        return utc_now()


def _map_location(article: Dict[str, Any]) -> Optional[RawLocation]:
    locations = article.get("locations")
    if not isinstance(locations, list) or not locations:
        return None
    first = locations[0] if isinstance(locations[0], dict) else {}
    lat, lng = finite_or_none(first.get("lat")), finite_or_none(first.get("long"))
    if lat is not None and lng is not None:
        return RawLocation(lat=lat, lng=lng, name=first.get("fullname"))
    if first.get("fullname"):
        return RawLocation(name=first["fullname"])
    return None


def map_article(article: Dict[str, Any], source_name: str = "GDELT") -> Optional[RawItem]:
    themes_raw = article.get("themes")
    themes = [t for t in themes_raw.split(";") if t] if isinstance(themes_raw, str) else []
    tone = finite_or_none(article.get("tone"))
    try:
        location = _map_location(article)
    except (TypeError, ValueError) as exc:
        logger.debug("gdelt_location_unparseable", url=article.get("url"), error=describe_error(exc))
        location = None
    return build_item(
        source_name,
        title=(article.get("title") or "").strip(),
        url=article.get("url") or "",
        timestamp=parse_seendate(article.get("seendate")),
        image_url=article.get("socialimage") or None,
        location=location,
        sentiment_tone=tone,
        theme_hints=themes,
    )


class GdeltSource:
    name = "GDELT"

    def __init__(
        self,
        cache: CacheService,
        *,
        base_url: str = settings.GDELT_BASE_URL,
        rate_limiter: Optional[TokenBucket] = None,
        client: Optional[httpx.AsyncClient] = None,
        cache_ttl_s: int = settings.GDELT_CACHE_TTL_S,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ):
        self.cache = cache
        self.base_url = base_url.rstrip("/")
        self.rate_limiter = rate_limiter or TokenBucket(settings.GDELT_RATE_LIMIT_PER_MIN, 60.0)
        self.cache_ttl_s = cache_ttl_s
        self.max_retries = max_retries
        self._client = client

    async def _get_articles(self, params: Dict[str, Any], operation: str) -> List[Dict[str, Any]]:
        await self.rate_limiter.acquire()
        async with open_client(self._client, base_url=self.base_url) as client:
            async def _call() -> httpx.Response:
                response = await client.get(DOC_PATH, params=params)
                response.raise_for_status()
                return response

            response = await with_retry(_call, operation, max_retries=self.max_retries)
        payload = response.json()
        articles = payload.get("articles") if isinstance(payload, dict) else None
        return articles if isinstance(articles, list) else []

    def _map_articles(self, articles: List[Dict[str, Any]]) -> List[RawItem]:
        items: List[RawItem] = []
        for article in articles:
            if not isinstance(article, dict):
                continue
            item = map_article(article, self.name)
            if item is not None:
                items.append(item)
        return items

    async def is_available(self) -> bool:
        try:
            await self._get_articles(
                {"query": "test", "mode": "artlist", "maxrecords": 1, "format": "json"},
                "gdelt_probe",
            )
        except Exception as exc:
            logger.warning("gdelt_unavailable", error=describe_error(exc))
            return False
        return True

    async def _fetch_latest_payload(self) -> List[Dict[str, Any]]:
        articles = await self._get_articles(
            {
                "query": LATEST_QUERY,
                "mode": "artlist",
                "maxrecords": 250,
                "format": "json",
                "sort": "datedesc",
                "timespan": "15min",
            },
            "gdelt_fetch",
        )
        return dump_items(self._map_articles(articles))

    async def fetch(self) -> List[RawItem]:
        try:
            payload = await self.cache.get_or_compute(
                CacheKeys.gdelt("artlist"), self._fetch_latest_payload, self.cache_ttl_s
            )
        except Exception as exc:
            logger.warning("gdelt_fetch_failed", error=describe_error(exc))
            return []
        items = load_items(payload, self.name)
        logger.info("gdelt_fetch_completed", items=len(items))
        return items

    async def fetch_by_theme(self, theme: str) -> List[RawItem]:
        try:
            articles = await self._get_articles(
                {
                    "query": f"theme:{theme}",
                    "mode": "artlist",
                    "maxrecords": 100,
                    "format": "json",
                    "sort": "datedesc",
                    "timespan": "1h",
                },
                f"gdelt_fetch_theme:{theme}",
            )
        except Exception as exc:
            logger.warning("gdelt_fetch_theme_failed", theme=theme, error=describe_error(exc))
            return []
        return self._map_articles(articles)

    async def fetch_by_location(self, lat: float, lng: float, radius_km: float) -> List[RawItem]:
        try:
            articles = await self._get_articles(
                {
                    "query": f"near:{lat},{lng},{radius_km}km",
                    "mode": "artlist",
                    "maxrecords": 50,
                    "format": "json",
                    "sort": "datedesc",
                },
                "gdelt_fetch_location",
            )
        except Exception as exc:
            logger.warning("gdelt_fetch_location_failed", lat=lat, lng=lng, error=describe_error(exc))
            return []
        return self._map_articles(articles)
