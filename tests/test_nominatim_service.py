from __future__ import annotations

import httpx
import pytest

from globenews.services.nominatim_service import NominatimService
from globenews.services.rate_limiting import TokenBucket

BASE_URL = "https://nominatim.openstreetmap.org"


def _service(handler) -> NominatimService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)
    return NominatimService(client=client, rate_limiter=TokenBucket(100, 1.0), max_retries=0)


@pytest.mark.asyncio
async def test_search_parses_first_result():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.url.params)
        return httpx.Response(
            200,
            json=[
                {
                    "lat": "48.8588897",
                    "lon": "2.3200410",
                    "display_name": "Paris, Île-de-France, France",
                    "importance": 0.94,
                }
            ],
        )

    result = await _service(handler).search("  Paris ")

    assert seen["q"] == "Paris"
    assert seen["format"] == "json"
    assert seen["limit"] == "1"
    assert result.lat == pytest.approx(48.8588897)
    assert result.lng == pytest.approx(2.320041)
    assert result.display_name.startswith("Paris")
    assert result.confidence == pytest.approx(0.94)


@pytest.mark.asyncio
async def test_importance_is_clamped_and_defaulted():
    payloads = iter(
        [
            [{"lat": "1", "lon": "2", "importance": 1.7}],
            [{"lat": "1", "lon": "2"}],
        ]
    )

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=next(payloads))

    service = _service(handler)

    assert (await service.search("somewhere")).confidence == 1.0
    assert (await service.search("elsewhere")).confidence == 0.5


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json=[]),
        httpx.Response(200, content=b"<html>not json</html>"),
        httpx.Response(503),
        httpx.Response(200, json=[{"display_name": "no coordinates"}]),
        httpx.Response(200, json=[{"lat": "nan", "lon": "2", "display_name": "broken"}]),
    ],
)
async def test_failures_read_as_no_result(response):
    def handler(request: httpx.Request) -> httpx.Response:
        return response

    assert await _service(handler).search("Atlantis") is None


@pytest.mark.asyncio
async def test_network_error_reads_as_no_result():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    assert await _service(handler).search("Atlantis") is None


@pytest.mark.asyncio
async def test_blank_query_skips_request():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    assert await _service(handler).search("   ") is None
