from __future__ import annotations

import argparse
import asyncio
from typing import List, Optional

from globenews.config import require_database_url, settings
from globenews.core.logging import configure_logging, get_logger
from globenews.core.request_id import with_run_id
from globenews.services.cache_service import CacheService, build_cache_service
from globenews.services.db_service import close_pool
from globenews.services.event_repository import (
    InMemoryEventStore,
    InMemoryGeocodeStore,
    PostgresEventStore,
    PostgresGeocodeStore,
)
from globenews.services.geocoding_service import GeocodingService
from globenews.services.news_aggregator_service import STATUS_FAILED, NewsAggregatorService
from globenews.services.nominatim_service import NominatimService
from globenews.services.sources import (
    EventRegistrySource,
    GdeltSource,
    NewsApiSource,
    PolymarketSource,
    RssSource,
    SourceAdapter,
)

configure_logging(service_name="worker")
logger = get_logger().bind(worker="news_aggregation")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="NewsAggregationBot — one fetch/dedup/geocode/score/persist pass over all sources."
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Use in-memory cache and stores; nothing is written to Redis or Postgres.",
    )
    parser.add_argument(
        "--warmup",
        action="store_true",
        help="Pre-populate the geocoding cache with common locations before the pass.",
    )
    parser.add_argument(
        "--max-geocode",
        type=int,
        default=settings.MAX_GEOCODE_PER_PASS,
        help="Maximum number of merged events to geocode in this pass.",
    )
    return parser.parse_args(argv)


def build_adapters(cache: CacheService) -> List[SourceAdapter]:
    return [
        GdeltSource(cache),
        NewsApiSource(cache),
        EventRegistrySource(cache),
        RssSource(cache),
        PolymarketSource(cache),
    ]


async def run_aggregation(*, dry_run: bool, warmup: bool, max_geocode: int) -> int:
    if dry_run:
        cache = build_cache_service(redis_url="")
        event_store, geocode_store = InMemoryEventStore(), InMemoryGeocodeStore()
    else:
        try:
            require_database_url()
        except RuntimeError as exc:
            logger.error("news_aggregation_bot_misconfigured", error=str(exc))
            return 1
        cache = build_cache_service()
        event_store, geocode_store = PostgresEventStore(), PostgresGeocodeStore()

    try:
        async with NominatimService() as nominatim:
            geocoding = GeocodingService(cache, geocode_store, nominatim)
            if warmup:
                await geocoding.warmup_cache()
            service = NewsAggregatorService(
                build_adapters(cache),
                cache=cache,
                geocoding=geocoding,
                event_store=event_store,
                max_geocode_per_pass=max_geocode,
            )
            result = await service.aggregate()
    except Exception as exc:
        logger.error("news_aggregation_bot_failed", error=str(exc))
        return 1
    finally:
        await cache.close()
        if not dry_run:
            await close_pool()

    if result.sources and all(status == STATUS_FAILED for status in result.sources.values()):
        logger.error("news_aggregation_bot_all_sources_failed", sources=result.sources)
        return 1

    logger.info(
        "news_aggregation_bot_finished",
        dry_run=dry_run,
        persisted=result.persisted,
        dropped_unresolved=result.dropped_unresolved,
        duration_ms=result.duration_ms,
    )
    return 0


async def main_async(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    with with_run_id():
        return await run_aggregation(
            dry_run=args.dry_run,
            warmup=args.warmup,
            max_geocode=args.max_geocode,
        )


def main() -> None:
    exit_code = asyncio.run(main_async())
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
