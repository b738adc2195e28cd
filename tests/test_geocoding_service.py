from __future__ import annotations

import pytest

from globenews.models.news_items import GeocodeResult
from globenews.services.cache_service import CacheKeys
from globenews.services.event_repository import InMemoryGeocodeStore
from globenews.services.geocoding_service import GeocodingService, normalize_location_key
from tests.fixtures import FakeGeocoder, make_cache

PARIS = GeocodeResult(lat=48.8566, lng=2.3522, display_name="Paris, France", confidence=0.9)
SPRINGFIELD = GeocodeResult(lat=39.7817, lng=-89.6501, display_name="Springfield, Illinois", confidence=0.6)


class BrokenStore:
    async def get(self, name):
        raise ConnectionError("db down")

    async def save(self, name, result):
        raise ConnectionError("db down")


def test_normalize_location_key():
    assert normalize_location_key("  Paris ") == "paris"
    assert normalize_location_key("") == ""


@pytest.mark.asyncio
async def test_geocode_writes_back_to_cache_and_store():
    cache = make_cache()
    store = InMemoryGeocodeStore()
    geocoder = FakeGeocoder({"paris": PARIS})
    service = GeocodingService(cache, store, geocoder)

    first = await service.geocode("Paris")
    second = await service.geocode("  PARIS ")

    assert first == second == PARIS
    assert geocoder.calls == ["Paris"]
    assert store.rows["paris"] == PARIS
    assert await cache.get(CacheKeys.geocoding("paris")) == PARIS.model_dump()


@pytest.mark.asyncio
async def test_store_hit_backfills_cache_without_geocoding():
    cache = make_cache()
    store = InMemoryGeocodeStore()
    store.rows["paris"] = PARIS
    geocoder = FakeGeocoder()
    service = GeocodingService(cache, store, geocoder)

    assert await service.geocode("Paris") == PARIS
    assert geocoder.calls == []
    assert await cache.get("geocoding:paris") is not None


@pytest.mark.asyncio
async def test_store_failures_fail_open():
    geocoder = FakeGeocoder({"paris": PARIS})
    service = GeocodingService(make_cache(), BrokenStore(), geocoder)

    assert await service.geocode("Paris") == PARIS


@pytest.mark.asyncio
async def test_unknown_and_blank_names_return_none():
    service = GeocodingService(make_cache(), None, FakeGeocoder())

    assert await service.geocode("Atlantis") is None
    assert await service.geocode("   ") is None


@pytest.mark.asyncio
async def test_geocode_batch_deduplicates_names():
    geocoder = FakeGeocoder({"paris": PARIS})
    service = GeocodingService(make_cache(), None, geocoder)

    results = await service.geocode_batch(["Paris", "Atlantis", "Paris"])

    assert results == {"Paris": PARIS, "Atlantis": None}
    assert geocoder.calls == ["Paris", "Atlantis"]


@pytest.mark.asyncio
async def test_extract_and_geocode_prefers_gazetteer_without_network():
    geocoder = FakeGeocoder()
    service = GeocodingService(make_cache(), None, geocoder)

    results = await service.extract_and_geocode("Magnitude 7.1 earthquake hits Tokyo")

    assert results[0].display_name == "Tokyo"
    assert results[0].lat == pytest.approx(35.6762)
    assert geocoder.calls == []


@pytest.mark.asyncio
async def test_extract_and_geocode_falls_back_to_geocoder_for_unknown_places():
    geocoder = FakeGeocoder({"springfield": SPRINGFIELD})
    service = GeocodingService(make_cache(), None, geocoder)

    results = await service.extract_and_geocode("Tornado damages homes near Springfield")

    assert results == [SPRINGFIELD]
    assert geocoder.calls == ["Springfield"]


@pytest.mark.asyncio
async def test_warmup_counts_resolved_names():
    geocoder = FakeGeocoder({"paris": PARIS})
    service = GeocodingService(make_cache(), None, geocoder)

    assert await service.warmup_cache(["Paris", "Atlantis"]) == 1
