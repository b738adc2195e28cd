# -*- coding: utf-8 -*-
"""
NominatimService — OSM Nominatim free-text search
- One request per second (Nominatim usage policy), enforced by a TokenBucket
- Transient failures retried twice, then reported as "no result"
- Confidence is Nominatim's `importance`, clamped to [0, 1]
"""

from __future__ import annotations

import math
from typing import Any, Dict, Optional

import httpx

from globenews.config import settings
from globenews.core.logging import get_logger
from globenews.models.news_items import GeocodeResult
from globenews.services.rate_limiting import TokenBucket, describe_error, with_retry

logger = get_logger()

NOMINATIM_MAX_RETRIES = 2
DEFAULT_TIMEOUT_S = 10.0
DEFAULT_CONFIDENCE = 0.5


def _parse_result(query: str, result: Dict[str, Any]) -> Optional[GeocodeResult]:
    try:
        lat = float(result["lat"])
        lng = float(result["lon"])
    except (KeyError, TypeError, ValueError):
        logger.debug("geocoding_result_unparseable", query=query)
        return None
    if not (math.isfinite(lat) and math.isfinite(lng)):
        logger.debug("geocoding_result_unparseable", query=query)
        return None
    try:
        confidence = float(result.get("importance", DEFAULT_CONFIDENCE))
    except (TypeError, ValueError):
        confidence = DEFAULT_CONFIDENCE
    if not math.isfinite(confidence):
        confidence = DEFAULT_CONFIDENCE
    return GeocodeResult(
        lat=lat,
        lng=lng,
        display_name=str(result.get("display_name") or query),
        confidence=max(0.0, min(1.0, confidence)),
    )


class NominatimService:
    """
    Geocoder backed by OSM's Nominatim /search endpoint.
    """

    def __init__(
        self,
        *,
        base_url: str = settings.NOMINATIM_BASE_URL,
        user_agent: str = settings.NOMINATIM_USER_AGENT,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        rate_limiter: Optional[TokenBucket] = None,
        client: Optional[httpx.AsyncClient] = None,
        max_retries: int = NOMINATIM_MAX_RETRIES,
    ):
        self.base_url = base_url.rstrip("/")
        self.rate_limiter = rate_limiter or TokenBucket(1, settings.NOMINATIM_MIN_INTERVAL_S or 1.0)
        self.max_retries = max_retries
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout_s),
            headers={"User-Agent": user_agent},
        )

    async def __aenter__(self) -> "NominatimService":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def search(self, text: str) -> Optional[GeocodeResult]:
        query = (text or "").strip()
        if not query:
            return None

        await self.rate_limiter.acquire()

        async def _call() -> httpx.Response:
            response = await self._client.get(
                "/search",
                params={"q": query, "format": "json", "limit": 1, "addressdetails": 0},
            )
            response.raise_for_status()
            return response

        try:
            response = await with_retry(_call, f"geocode:{query}", max_retries=self.max_retries)
            data = response.json()
        except httpx.HTTPError as exc:
            logger.warning("geocoding_request_failed", query=query, error=describe_error(exc))
            return None
        except ValueError as exc:
            logger.warning("geocoding_invalid_json", query=query, error=str(exc))
            return None

        if not isinstance(data, list) or not data:
            logger.debug("geocoding_empty_response", query=query)
            return None
        return _parse_result(query, data[0])
