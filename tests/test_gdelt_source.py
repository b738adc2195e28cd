from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from globenews.services.rate_limiting import TokenBucket
from globenews.services.sources.base import build_item
from globenews.services.sources.gdelt_source import GdeltSource, map_article, parse_seendate
from tests.fixtures import make_cache

BASE_URL = "https://api.gdeltproject.org/api/v2"

ARTICLE = {
    "url": "https://news.example.com/quake",
    "title": "Magnitude 7.1 earthquake hits Tokyo",
    "seendate": "20250301T120000Z",
    "socialimage": "https://img.example.com/quake.jpg",
    "tone": -7.5,
    "themes": "NATURAL_DISASTER;EARTHQUAKE;",
    "locations": [{"fullname": "Tokyo, Japan", "lat": 35.6762, "long": 139.6503}],
}


def _source(handler, **kwargs) -> GdeltSource:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)
    return GdeltSource(
        make_cache(),
        client=client,
        rate_limiter=TokenBucket(100, 1.0),
        **kwargs,
    )


def test_parse_seendate_formats():
    expected = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
    assert parse_seendate("20250301120000") == expected
    assert parse_seendate("20250301T120000Z") == expected
    fallback = parse_seendate("garbage")
    assert fallback.tzinfo is not None


def test_map_article_extracts_location_tone_and_themes():
    item = map_article(ARTICLE)

    assert item is not None
    assert item.source_name == "GDELT"
    assert item.location.lat == pytest.approx(35.6762)
    assert item.location.name == "Tokyo, Japan"
    assert item.sentiment_tone == -7.5
    assert item.theme_hints == ["NATURAL_DISASTER", "EARTHQUAKE"]
    assert item.image_url == "https://img.example.com/quake.jpg"


def test_map_article_skips_items_without_title_or_url():
    assert map_article({**ARTICLE, "title": ""}) is None
    assert map_article({**ARTICLE, "url": None}) is None


def test_map_article_discards_non_finite_numbers():
    article = json.loads(
        '{"url": "https://news.example.com/quake", "title": "Magnitude 7.1 earthquake hits Tokyo",'
        ' "seendate": "20250301T120000Z", "tone": NaN,'
        ' "locations": [{"fullname": "Tokyo, Japan", "lat": NaN, "long": Infinity}]}'
    )

    item = map_article(article)

    assert item is not None
    assert item.sentiment_tone is None
    assert not item.has_coordinates
    assert item.location.name == "Tokyo, Japan"


@pytest.mark.parametrize("field", ["sentiment_tone", "location"])
def test_build_item_rejects_non_finite_values(field):
    value = float("nan") if field == "sentiment_tone" else {"lat": float("inf"), "lng": 139.65}

    item = build_item(
        "GDELT",
        title="Magnitude 7.1 earthquake hits Tokyo",
        url="https://news.example.com/quake",
        timestamp=datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc),
        **{field: value},
    )

    assert item is None


@pytest.mark.asyncio
async def test_fetch_maps_and_caches_articles():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        assert request.url.path.endswith("/doc/doc")
        assert request.url.params["format"] == "json"
        return httpx.Response(200, json={"articles": [ARTICLE, {"title": "no url"}]})

    source = _source(handler)

    first = await source.fetch()
    second = await source.fetch()

    assert [i.url for i in first] == [ARTICLE["url"]]
    assert [i.url for i in second] == [ARTICLE["url"]]
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_fetch_returns_empty_list_on_upstream_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    source = _source(handler, max_retries=0)

    assert await source.fetch() == []
    assert await source.is_available() is False


@pytest.mark.asyncio
async def test_fetch_by_location_builds_near_query():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["query"] = request.url.params["query"]
        return httpx.Response(200, json={"articles": [ARTICLE]})

    source = _source(handler)
    items = await source.fetch_by_location(35.7, 139.7, 50)

    assert seen["query"] == "near:35.7,139.7,50km"
    assert len(items) == 1
