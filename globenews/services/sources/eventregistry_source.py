from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, List, Optional

import httpx

from globenews.config import settings
from globenews.core.logging import get_logger
from globenews.models.news_items import RawItem, RawLocation
from globenews.services.cache_service import CacheKeys, CacheService
from globenews.services.rate_limiting import DEFAULT_MAX_RETRIES, TokenBucket, describe_error, with_retry
from globenews.services.sources.base import (
    QuotaCounter,
    build_item,
    dump_items,
    finite_or_none,
    load_items,
    open_client,
    parse_iso_datetime,
    utc_now,
)

logger = get_logger().bind(module="eventregistry_source")

EVENTS_PATH = "/event/getEvents"
EVENT_URL_TEMPLATE = "https://eventregistry.org/event/{uri}"
CONCEPT_MIN_SCORE = 50


def _localized(value: Any) -> Optional[str]:
    """Prefer the English label of a {lang: text} mapping, else any non-empty one."""
    if not isinstance(value, dict):
        return None
    if value.get("eng"):
        return str(value["eng"])
    for text in value.values():
        if text:
            return str(text)
    return None


def _map_location(event: Dict[str, Any]) -> Optional[RawLocation]:
    location = event.get("location")
    if not isinstance(location, dict):
        return None
    name = _localized(location.get("label"))
    if not name and isinstance(location.get("country"), dict):
        name = _localized(location["country"].get("label"))
    return RawLocation(
        lat=finite_or_none(location.get("lat")),
        lng=finite_or_none(location.get("long")),
        name=name,
    )


def map_event(event: Dict[str, Any], source_name: str = "EventRegistry") -> Optional[RawItem]:
    uri = event.get("uri")
    timestamp = parse_iso_datetime(event.get("eventDate"))
    if not uri or timestamp is None:
        logger.debug("eventregistry_item_skipped", uri=uri, reason="missing_uri_or_date")
        return None

    themes = [
        label
        for label in (
            _localized(concept.get("label"))
            for concept in event.get("concepts") or []
            if isinstance(concept, dict) and (concept.get("score") or 0) > CONCEPT_MIN_SCORE
        )
        if label
    ]
    sentiment = finite_or_none(event.get("sentiment"))
    images = event.get("images") or []
    try:
        location = _map_location(event)
    except (TypeError, ValueError):
        location = None

    return build_item(
        source_name,
        title=(_localized(event.get("title")) or "").strip(),
        summary=_localized(event.get("summary")),
        url=EVENT_URL_TEMPLATE.format(uri=uri),
        timestamp=timestamp,
        image_url=images[0] if images else None,
        location=location,
        # sentiment is -1..1; scale to the -10..10 tone range other feeds use
        sentiment_tone=sentiment * 10 if sentiment is not None else None,
        theme_hints=themes,
    )


class EventRegistrySource:
    """
    EventRegistry event graph. Every request costs one token from a monthly
    allowance (free tier: 2000), so results are cached per UTC hour.
    """

    name = "EventRegistry"

    def __init__(
        self,
        cache: CacheService,
        *,
        api_key: Optional[str] = settings.EVENTREGISTRY_KEY,
        base_url: str = settings.EVENTREGISTRY_BASE_URL,
        monthly_tokens: int = settings.EVENTREGISTRY_MONTHLY_TOKENS,
        quota: Optional[QuotaCounter] = None,
        rate_limiter: Optional[TokenBucket] = None,
        client: Optional[httpx.AsyncClient] = None,
        cache_ttl_s: int = settings.EVENTREGISTRY_CACHE_TTL_S,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ):
        self.cache = cache
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.quota = quota or QuotaCounter(monthly_tokens, "month", name=self.name)
        self.rate_limiter = rate_limiter or TokenBucket(settings.EVENTREGISTRY_RATE_LIMIT_PER_MIN, 60.0)
        self.cache_ttl_s = cache_ttl_s
        self.max_retries = max_retries
        self._client = client

    async def is_available(self) -> bool:
        if not self.api_key:
            logger.warning("eventregistry_key_missing")
            return False
        return self.quota.has_remaining()

    def remaining_tokens(self) -> int:
        return self.quota.remaining()

    async def _get_events(self, params: Dict[str, Any], operation: str) -> List[RawItem]:
        self.quota.consume()
        query = {
            "apiKey": self.api_key,
            "resultType": "events",
            "eventsSortBy": "date",
            "eventsSortByAsc": "false",
            "eventsIncludeEventSummary": "true",
            "eventsIncludeEventLocation": "true",
            "lang": "eng",
            **params,
        }
        await self.rate_limiter.acquire()
        async with open_client(self._client, base_url=self.base_url) as client:
            async def _call() -> httpx.Response:
                response = await client.get(EVENTS_PATH, params=query)
                response.raise_for_status()
                return response

            response = await with_retry(_call, operation, max_retries=self.max_retries)

        payload = response.json()
        results = ((payload or {}).get("events") or {}).get("results") or []
        items = [
            item
            for item in (map_event(e, self.name) for e in results if isinstance(e, dict))
            if item is not None
        ]
        logger.info("eventregistry_events_mapped", operation=operation, received=len(results), kept=len(items))
        return items

    async def _fetch_recent_payload(self) -> List[Dict[str, Any]]:
        date_start = (utc_now() - timedelta(days=1)).strftime("%Y-%m-%d")
        items = await self._get_events(
            {
                "eventsCount": 50,
                "eventsEventImageCount": 1,
                "eventsIncludeEventConcepts": "true",
                "dateStart": date_start,
            },
            "eventregistry_fetch",
        )
        return dump_items(items)

    async def fetch(self) -> List[RawItem]:
        if not await self.is_available():
            logger.warning("eventregistry_not_available", remaining=self.quota.remaining())
            return []
        key = CacheKeys.eventregistry_recent(utc_now().strftime("%Y-%m-%dT%H"))
        try:
            payload = await self.cache.get_or_compute(key, self._fetch_recent_payload, self.cache_ttl_s)
        except Exception as exc:
            logger.warning("eventregistry_fetch_failed", error=describe_error(exc))
            return []
        return load_items(payload, self.name)

    async def fetch_by_location(self, lat: float, lng: float, radius_km: float) -> List[RawItem]:
        if not await self.is_available():
            return []
        try:
            return await self._get_events(
                {"locationUri": f"geo:{lat},{lng},{radius_km}", "eventsCount": 30},
                "eventregistry_fetch_location",
            )
        except Exception as exc:
            logger.warning("eventregistry_fetch_location_failed", lat=lat, lng=lng, error=describe_error(exc))
            return []
