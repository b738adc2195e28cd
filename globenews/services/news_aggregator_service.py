"""
One aggregation pass:

    fetch (all adapters, concurrently) → dedup → geocode gaps → classify + score
    → drop unresolved → upsert → invalidate downstream caches

Every stage degrades instead of aborting: a failed adapter contributes no
items, a geocode miss leaves the event unresolved (dropped before
persistence), a failed row is counted by the store.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

from globenews.config import ConfigurationError, settings
from globenews.core.logging import get_logger
from globenews.core.request_id import with_source
from globenews.models.news_items import (
    AggregationResult,
    CanonicalEvent,
    MergedGroup,
    RawItem,
    RawLocation,
)
from globenews.services.cache_service import CacheKeys, CacheService
from globenews.services.event_dedupe_service import EventDedupeService, to_canonical_events
from globenews.services.event_repository import EventStore, UpsertResult
from globenews.services.geocoding_service import GeocodingService
from globenews.services.intensity_service import IntensityService
from globenews.services.news_classification_service import NewsClassificationService
from globenews.services.sources import EventRegistrySource, GdeltSource, NewsApiSource, SourceAdapter

logger = get_logger().bind(module="news_aggregator")

STATUS_OK = "ok"
STATUS_UNAVAILABLE = "unavailable"
STATUS_FAILED = "failed"


class NewsAggregatorService:
    def __init__(
        self,
        adapters: Sequence[SourceAdapter],
        *,
        cache: CacheService,
        geocoding: GeocodingService,
        event_store: EventStore,
        dedupe: Optional[EventDedupeService] = None,
        classifier: Optional[NewsClassificationService] = None,
        intensity: Optional[IntensityService] = None,
        max_geocode_per_pass: int = settings.MAX_GEOCODE_PER_PASS,
    ):
        if not adapters:
            raise ConfigurationError("NewsAggregatorService needs at least one source adapter")
        if max_geocode_per_pass < 0:
            raise ConfigurationError("max_geocode_per_pass must be non-negative")
        self.adapters = list(adapters)
        self.cache = cache
        self.geocoding = geocoding
        self.event_store = event_store
        self.dedupe = dedupe or EventDedupeService()
        self.classifier = classifier or NewsClassificationService()
        self.intensity = intensity or IntensityService()
        self.max_geocode_per_pass = max_geocode_per_pass

    # -- fetch ----------------------------------------------------------------

    async def _fetch_adapter(self, adapter: SourceAdapter) -> Tuple[str, List[RawItem]]:
        with with_source(adapter.name):
            if not await adapter.is_available():
                logger.warning("source_unavailable", source=adapter.name)
                return STATUS_UNAVAILABLE, []
            items = await adapter.fetch()
            logger.info("source_fetched", source=adapter.name, items=len(items))
            return STATUS_OK, items

    async def fetch_all_sources(self) -> Tuple[List[RawItem], Dict[str, str]]:
        results = await asyncio.gather(
            *(self._fetch_adapter(adapter) for adapter in self.adapters),
            return_exceptions=True,
        )
        items: List[RawItem] = []
        statuses: Dict[str, str] = {}
        for adapter, outcome in zip(self.adapters, results):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error("source_fetch_failed", source=adapter.name, error=str(outcome))
                statuses[adapter.name] = STATUS_FAILED
                continue
            status, fetched = outcome
            statuses[adapter.name] = status
            items.extend(fetched)
        return items, statuses

    # -- geography ------------------------------------------------------------

    async def _resolve_group(self, group: MergedGroup) -> Optional[MergedGroup]:
        item = group.canonical_item
        text = f"{item.title} {item.summary or ''}"
        location_name = item.location.name if item.location else None

        matches = await self.geocoding.extract_and_geocode(text)
        if matches:
            best = matches[0]
            location = RawLocation(lat=best.lat, lng=best.lng, name=best.display_name)
        elif location_name:
            result = await self.geocoding.geocode(location_name)
            if result is None:
                return None
            location = RawLocation(lat=result.lat, lng=result.lng, name=location_name)
        else:
            return None

        return group.model_copy(
            update={"canonical_item": item.model_copy(update={"location": location})}
        )

    async def fill_missing_geography(self, groups: List[MergedGroup]) -> Tuple[List[MergedGroup], int]:
        """
        Resolve coordinates for groups that have none, at most
        `max_geocode_per_pass` groups per call. Returns (groups, resolved_count).
        """
        resolved = 0
        attempted = 0
        out: List[MergedGroup] = []
        for group in groups:
            if group.canonical_item.has_coordinates or attempted >= self.max_geocode_per_pass:
                out.append(group)
                continue
            attempted += 1
            try:
                updated = await self._resolve_group(group)
            except Exception as exc:
                logger.warning(
                    "group_geocode_failed",
                    title=group.canonical_item.title[:80],
                    error=str(exc),
                )
                updated = None
            if updated is None:
                out.append(group)
            else:
                resolved += 1
                out.append(updated)
        if attempted:
            logger.info("geocoding_pass_complete", attempted=attempted, resolved=resolved)
        return out, resolved

    # -- scoring --------------------------------------------------------------

    def build_events(self, groups: Sequence[MergedGroup]) -> List[CanonicalEvent]:
        return to_canonical_events(groups, self.classifier.classify, self.intensity.score_group)

    # -- persistence ----------------------------------------------------------

    async def _persist(self, events: List[CanonicalEvent]) -> UpsertResult:
        if not events:
            return UpsertResult()
        try:
            return await self.event_store.upsert_events(events)
        except Exception as exc:
            logger.error("event_persist_failed", events=len(events), error=str(exc))
            return UpsertResult(failed=len(events), failed_ids=[e.id for e in events])

    async def invalidate_caches(self) -> None:
        await self.cache.delete_by_pattern(CacheKeys.EVENTS_PATTERN)
        await self.cache.delete_by_pattern(CacheKeys.HEATMAP_PATTERN)
        await self.cache.delete(CacheKeys.CATEGORIES_SUMMARY)

    # -- entry points ---------------------------------------------------------

    async def aggregate(self) -> AggregationResult:
        started = time.monotonic()
        logger.info("news_aggregation_started", adapters=[a.name for a in self.adapters])

        items, statuses = await self.fetch_all_sources()
        result = AggregationResult(total_fetched=len(items), sources=statuses)
        if not items:
            logger.warning("news_aggregation_no_items", sources=statuses)

        groups = self.dedupe.deduplicate(items)
        groups, result.geocoded = await self.fill_missing_geography(groups)
        result.total_groups = len(groups)

        events = self.build_events(groups)
        valid = [event for event in events if not event.is_unresolved]
        result.dropped_unresolved = len(events) - len(valid)

        upserted = await self._persist(valid)
        result.persisted = upserted.upserted
        result.failed_persist = upserted.failed

        await self.invalidate_caches()

        result.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "news_aggregation_summary",
            total_fetched=result.total_fetched,
            total_groups=result.total_groups,
            geocoded=result.geocoded,
            dropped_unresolved=result.dropped_unresolved,
            persisted=result.persisted,
            failed_persist=result.failed_persist,
            duration_ms=result.duration_ms,
        )
        return result

    async def get_sources_status(self) -> List[Dict[str, Any]]:
        statuses: List[Dict[str, Any]] = []
        for adapter in self.adapters:
            try:
                available = await adapter.is_available()
            except Exception as exc:
                logger.warning("source_status_failed", source=adapter.name, error=str(exc))
                available = False
            statuses.append({"name": adapter.name, "available": available, "info": _source_info(adapter)})
        return statuses

    def _find_adapter(self, adapter_type: type) -> Optional[Any]:
        return next((a for a in self.adapters if isinstance(a, adapter_type)), None)

    async def fetch_by_location(self, lat: float, lng: float, radius_km: float = 100.0) -> List[CanonicalEvent]:
        logger.info("fetch_by_location_started", lat=lat, lng=lng, radius_km=radius_km)
        items: List[RawItem] = []
        gdelt = self._find_adapter(GdeltSource)
        if gdelt is not None:
            items.extend(await gdelt.fetch_by_location(lat, lng, radius_km))
        eventregistry = self._find_adapter(EventRegistrySource)
        if eventregistry is not None:
            items.extend(await eventregistry.fetch_by_location(lat, lng, radius_km))
        events = self.build_events(self.dedupe.deduplicate(items))
        return [event for event in events if not event.is_unresolved]

    async def fetch_by_theme(self, theme: str) -> List[CanonicalEvent]:
        logger.info("fetch_by_theme_started", theme=theme)
        gdelt = self._find_adapter(GdeltSource)
        if gdelt is None:
            return []
        groups = self.dedupe.deduplicate(await gdelt.fetch_by_theme(theme))
        groups, _ = await self.fill_missing_geography(groups)
        events = self.build_events(groups)
        return [event for event in events if not event.is_unresolved]


def _source_info(adapter: SourceAdapter) -> Optional[str]:
    if isinstance(adapter, EventRegistrySource):
        return f"{adapter.remaining_tokens()} tokens remaining this month"
    if isinstance(adapter, NewsApiSource):
        return f"{adapter.remaining_requests()} requests remaining today"
    return None
