from __future__ import annotations

import httpx
import pytest

from globenews.services.rate_limiting import TokenBucket
from globenews.services.sources.polymarket_source import PolymarketSource, parse_outcomes
from tests.fixtures import FakeClock, FakeSleep, make_cache

BASE_URL = "https://gamma-api.polymarket.com"

CEASEFIRE_MARKET = {
    "id": "101",
    "slug": "russia-ukraine-ceasefire-2025",
    "question": "Will Russia and Ukraine agree to a ceasefire in 2025?",
    "outcomes": '["Yes", "No"]',
    "outcomePrices": '["0.62", "0.38"]',
    "volume": "1500000",
    "endDate": "2025-12-31T00:00:00Z",
}

BITCOIN_MARKET = {
    "id": "102",
    "slug": "bitcoin-200k",
    "question": "Will Bitcoin reach $200k this year?",
    "volume": "9000000",
}

ELECTION_MARKET = {
    "id": "103",
    "slug": "uk-general-election",
    "question": "Will Labour win the UK general election?",
    "outcomes": '["Yes", "No"]',
    "outcomePrices": '["0.8", "0.2"]',
    "volume": "250000",
}


def _handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/events":
        return httpx.Response(
            200,
            json=[{"title": "Ceasefire", "markets": [CEASEFIRE_MARKET, BITCOIN_MARKET]}],
        )
    if request.url.path == "/markets":
        # 101 repeats the event market and must not be emitted twice
        return httpx.Response(200, json=[CEASEFIRE_MARKET, ELECTION_MARKET])
    return httpx.Response(404)


def _source(handler=_handler, **kwargs) -> PolymarketSource:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)
    kwargs.setdefault("rate_limiter", TokenBucket(100, 1.0))
    return PolymarketSource(make_cache(), client=client, max_retries=0, **kwargs)


def test_parse_outcomes_defaults_and_prices():
    assert parse_outcomes(CEASEFIRE_MARKET) == [("Yes", 0.62), ("No", 0.38)]
    assert parse_outcomes({}) == [("Yes", 0.5), ("No", 0.5)]
    assert parse_outcomes({"outcomes": "not json"}) == [("Yes", 0.5), ("No", 0.5)]


def test_map_market_keeps_geographic_questions_only():
    source = _source()

    item = source.map_market(CEASEFIRE_MARKET)

    assert item is not None
    assert item.location.name == "Ukraine"
    assert item.theme_hints == ["ARMED_CONFLICT"]
    assert item.url == "https://polymarket.com/event/russia-ukraine-ceasefire-2025"
    assert item.summary.startswith("Prediction market: Yes 62% / No 38%")
    assert source.map_market(BITCOIN_MARKET) is None


@pytest.mark.asyncio
async def test_fetch_merges_events_and_markets_by_volume():
    source = _source()

    items = await source.fetch()

    assert [i.url.rsplit("/", 1)[-1] for i in items] == [
        "russia-ukraine-ceasefire-2025",
        "uk-general-election",
    ]
    assert items[1].location.name == "United Kingdom"


@pytest.mark.asyncio
async def test_disabled_source_reports_unavailable():
    source = _source(enabled=False)

    assert await source.is_available() is False


@pytest.mark.asyncio
async def test_fetch_failure_returns_empty_list():
    def failing(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    source = _source(failing)

    assert await source.fetch() == []


@pytest.mark.asyncio
async def test_each_upstream_call_takes_a_token():
    clock = FakeClock()
    sleep = FakeSleep(clock)
    bucket = TokenBucket(1, 60.0, clock=clock, sleep=sleep)

    items = await _source(rate_limiter=bucket).fetch()

    # /events takes the only token, /markets waits for the refill
    assert len(items) == 2
    assert sleep.calls == [60.0]
