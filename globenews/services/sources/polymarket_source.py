"""
PolymarketSource — prediction-market questions as event reports.

Only geographically relevant questions are kept; their location comes from
the extraction layer, and the detected market category is passed on as a
theme hint so the classifier can use it.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import httpx

from globenews.config import settings
from globenews.core.logging import get_logger
from globenews.models.news_items import RawItem, RawLocation
from globenews.services.cache_service import CacheKeys, CacheService
from globenews.services.location_extraction import LocationExtractor, get_location_extractor
from globenews.services.rate_limiting import DEFAULT_MAX_RETRIES, TokenBucket, describe_error, with_retry
from globenews.services.sources.base import (
    build_item,
    dump_items,
    load_items,
    open_client,
    parse_iso_datetime,
    utc_now,
)

logger = get_logger().bind(module="polymarket_source")

MARKET_URL_TEMPLATE = "https://polymarket.com/event/{slug}"
CLOSING_SOON = timedelta(hours=24)

# market category → theme token understood by the classifier
MARKET_THEME_HINTS: Dict[str, str] = {
    "election": "ELECTION",
    "geopolitical": "ARMED_CONFLICT",
    "disaster": "NATURAL_DISASTER",
    "economic": "ECONOMY",
}


def parse_outcomes(market: Dict[str, Any]) -> List[Tuple[str, float]]:
    """Outcome names and prices arrive as JSON-encoded strings; default to a 50/50 binary."""
    try:
        names = json.loads(market.get("outcomes") or '["Yes", "No"]')
        prices = json.loads(market.get("outcomePrices") or "[0.5, 0.5]")
        outcomes = []
        for idx, name in enumerate(names):
            try:
                probability = float(prices[idx])
            except (IndexError, TypeError, ValueError):
                probability = 0.5
            outcomes.append((str(name), probability))
        return outcomes
    except (TypeError, ValueError):
        return [("Yes", 0.5), ("No", 0.5)]


def _volume(market: Dict[str, Any]) -> float:
    for key in ("volume", "volumeNum"):
        try:
            value = float(market.get(key) or 0)
        except (TypeError, ValueError):
            continue
        if value:
            return value
    return 0.0


def _summary(outcomes: List[Tuple[str, float]], volume: float, end_date: Optional[datetime]) -> str:
    odds = " / ".join(f"{name} {round(probability * 100)}%" for name, probability in outcomes)
    parts = [f"Prediction market: {odds}", f"volume ${volume:,.0f}"]
    if end_date is not None:
        closing = " (closing soon)" if end_date - utc_now() < CLOSING_SOON else ""
        parts.append(f"closes {end_date.date().isoformat()}{closing}")
    return ", ".join(parts)


class PolymarketSource:
    name = "Polymarket"

    def __init__(
        self,
        cache: CacheService,
        *,
        extractor: Optional[LocationExtractor] = None,
        base_url: str = settings.POLYMARKET_BASE_URL,
        rate_limiter: Optional[TokenBucket] = None,
        client: Optional[httpx.AsyncClient] = None,
        cache_ttl_s: int = settings.POLYMARKET_CACHE_TTL_S,
        enabled: bool = settings.POLYMARKET_ENABLED,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ):
        self.cache = cache
        self.extractor = extractor or get_location_extractor()
        self.base_url = base_url.rstrip("/")
        self.rate_limiter = rate_limiter or TokenBucket(settings.POLYMARKET_RATE_LIMIT_PER_MIN, 60.0)
        self.cache_ttl_s = cache_ttl_s
        self.enabled = enabled
        self.max_retries = max_retries
        self._client = client

    async def is_available(self) -> bool:
        return self.enabled

    def map_market(self, market: Dict[str, Any], event: Optional[Dict[str, Any]] = None) -> Optional[RawItem]:
        question = (market.get("question") or (event or {}).get("title") or "").strip()
        if not question:
            return None
        extraction = self.extractor.extract(question)
        if not extraction.locations or extraction.confidence <= 0.3:
            return None
        best = max(extraction.locations, key=lambda loc: loc.confidence)

        end_date = parse_iso_datetime(market.get("endDate") or (event or {}).get("endDate"))
        category = self.extractor.detect_market_category(question)
        slug = market.get("slug") or market.get("id")
        return build_item(
            self.name,
            title=question,
            summary=_summary(parse_outcomes(market), _volume(market), end_date),
            url=MARKET_URL_TEMPLATE.format(slug=slug) if slug else "",
            timestamp=utc_now(),
            location=RawLocation(lat=best.lat, lng=best.lng, name=best.name),
            theme_hints=[MARKET_THEME_HINTS[category]] if category in MARKET_THEME_HINTS else [],
        )

    async def _get_json(self, client: httpx.AsyncClient, path: str) -> List[Dict[str, Any]]:
        await self.rate_limiter.acquire()

        async def _call() -> httpx.Response:
            response = await client.get(
                path, params={"active": "true", "closed": "false", "limit": 100}
            )
            response.raise_for_status()
            return response

        response = await with_retry(_call, f"polymarket{path}", max_retries=self.max_retries)
        payload = response.json()
        return [row for row in payload if isinstance(row, dict)] if isinstance(payload, list) else []

    async def _fetch_markets_payload(self) -> List[Dict[str, Any]]:
        mapped: List[Tuple[float, RawItem]] = []
        seen_ids: set[str] = set()
        async with open_client(self._client, base_url=self.base_url) as client:
            for event in await self._get_json(client, "/events"):
                for market in event.get("markets") or []:
                    if not isinstance(market, dict):
                        continue
                    seen_ids.add(str(market.get("id")))
                    item = self.map_market(market, event)
                    if item is not None:
                        mapped.append((_volume(market), item))
            for market in await self._get_json(client, "/markets"):
                if str(market.get("id")) in seen_ids:
                    continue
                item = self.map_market(market)
                if item is not None:
                    mapped.append((_volume(market), item))

        # most liquid first
        mapped.sort(key=lambda pair: pair[0], reverse=True)
        logger.info("polymarket_markets_mapped", kept=len(mapped))
        return dump_items(item for _, item in mapped)

    async def fetch(self) -> List[RawItem]:
        try:
            payload = await self.cache.get_or_compute(
                CacheKeys.polymarket_markets(), self._fetch_markets_payload, self.cache_ttl_s
            )
        except Exception as exc:
            logger.warning("polymarket_fetch_failed", error=describe_error(exc))
            return []
        return load_items(payload, self.name)
