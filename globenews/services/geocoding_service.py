"""
Location name → coordinates, layered:

    cache (geocoding:<name>) → durable store → rate-limited geocoder

Results found further down are written back up. Every failure on the way
reads as "no result"; callers get None, never an exception.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Protocol

from globenews.config import settings
from globenews.core.logging import get_logger
from globenews.models.news_items import GeocodeResult
from globenews.services.cache_service import CacheKeys, CacheService
from globenews.services.event_repository import GeocodeStore
from globenews.services.location_extraction import LocationExtractor, get_location_extractor

logger = get_logger().bind(module="geocoding_service")


class Geocoder(Protocol):
    async def search(self, text: str) -> Optional[GeocodeResult]: ...


def normalize_location_key(name: str) -> str:
    return (name or "").strip().lower()


class GeocodingService:
    def __init__(
        self,
        cache: CacheService,
        store: Optional[GeocodeStore],
        geocoder: Geocoder,
        *,
        extractor: Optional[LocationExtractor] = None,
        cache_ttl_s: int = settings.GEOCODE_CACHE_TTL_S,
    ):
        self.cache = cache
        self.store = store
        self.geocoder = geocoder
        self.extractor = extractor or get_location_extractor()
        self.cache_ttl_s = cache_ttl_s

    async def _from_cache(self, key: str) -> Optional[GeocodeResult]:
        cached = await self.cache.get(CacheKeys.geocoding(key))
        if cached is None:
            return None
        try:
            return GeocodeResult.model_validate(cached)
        except ValueError as exc:
            logger.warning("geocoding_cache_entry_invalid", location=key, error=str(exc))
            return None

    async def _from_store(self, key: str) -> Optional[GeocodeResult]:
        if self.store is None:
            return None
        try:
            return await self.store.get(key)
        except Exception as exc:
            logger.warning("geocoding_store_read_failed", location=key, error=str(exc))
            return None

    async def _save_to_store(self, key: str, result: GeocodeResult) -> None:
        if self.store is None:
            return
        try:
            await self.store.save(key, result)
        except Exception as exc:
            logger.warning("geocoding_store_write_failed", location=key, error=str(exc))

    async def geocode(self, name: str) -> Optional[GeocodeResult]:
        key = normalize_location_key(name)
        if not key:
            return None

        cached = await self._from_cache(key)
        if cached is not None:
            logger.debug("geocoding_cache_hit", location=key)
            return cached

        stored = await self._from_store(key)
        if stored is not None:
            await self.cache.set(CacheKeys.geocoding(key), stored.model_dump(), self.cache_ttl_s)
            return stored

        result = await self.geocoder.search(name.strip())
        if result is None:
            logger.debug("geocoding_no_result", location=key)
            return None

        await self.cache.set(CacheKeys.geocoding(key), result.model_dump(), self.cache_ttl_s)
        await self._save_to_store(key, result)
        logger.debug("geocoding_resolved", location=key, lat=result.lat, lng=result.lng)
        return result

    async def geocode_batch(self, names: Iterable[str]) -> Dict[str, Optional[GeocodeResult]]:
        # one at a time: the geocoder's rate ceiling is per second
        results: Dict[str, Optional[GeocodeResult]] = {}
        for name in names:
            if name in results:
                continue
            results[name] = await self.geocode(name)
        return results

    async def extract_and_geocode(self, text: str) -> List[GeocodeResult]:
        """
        Resolve every place mentioned in `text`, best candidate first.

        Gazetteer hits already carry coordinates and are returned without a
        network call; only names the gazetteer does not know are geocoded.
        """
        extraction, unresolved = self.extractor.extract_with_unresolved(text)
        ranked = sorted(extraction.locations, key=lambda loc: -loc.confidence)
        results = [
            GeocodeResult(lat=loc.lat, lng=loc.lng, display_name=loc.name, confidence=loc.confidence)
            for loc in ranked
        ]
        if results:
            return results
        for name in unresolved:
            result = await self.geocode(name)
            if result is not None:
                results.append(result)
        return results

    async def warmup_cache(self, names: Optional[Iterable[str]] = None) -> int:
        locations = list(names) if names is not None else list(self.extractor.gazetteer.common_locations)
        logger.info("geocoding_warmup_started", count=len(locations))
        resolved = 0
        for name in locations:
            if await self.geocode(name) is not None:
                resolved += 1
        logger.info("geocoding_warmup_complete", resolved=resolved, total=len(locations))
        return resolved
