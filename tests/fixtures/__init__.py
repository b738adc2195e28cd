# tests/fixtures/__init__.py
"""
Shared factories and fakes for the pipeline tests:
- make_raw_item()
- make_cache()
- FakeClock / FakeSleep for the rate limiter and retry loop
- FakeGeocoder for the geocoding layer
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from globenews.models.news_items import GeocodeResult, RawItem, RawLocation
from globenews.services.cache_service import CacheService, InMemoryCacheBackend

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_raw_item(
    title: str = "Test headline",
    *,
    url: Optional[str] = None,
    source_name: str = "GDELT",
    summary: Optional[str] = None,
    offset_hours: float = 0,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    location_name: Optional[str] = None,
    image_url: Optional[str] = None,
    sentiment_tone: Optional[float] = None,
    theme_hints: Optional[List[str]] = None,
) -> RawItem:
    """Factory for a RawItem stamped relative to T0."""
    location = None
    if lat is not None or lng is not None or location_name is not None:
        location = RawLocation(lat=lat, lng=lng, name=location_name)
    slug = "-".join(title.lower().split())[:60]
    return RawItem(
        title=title,
        summary=summary,
        url=url or f"https://news.example.com/{source_name.lower()}/{slug}",
        timestamp=T0 + timedelta(hours=offset_hours),
        source_name=source_name,
        image_url=image_url,
        location=location,
        sentiment_tone=sentiment_tone,
        theme_hints=theme_hints or [],
    )


def make_cache() -> CacheService:
    return CacheService(InMemoryCacheBackend())


class FakeClock:
    """Monotonic clock driven by the test (and by FakeSleep)."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


class FakeSleep:
    """Records requested delays and advances the paired clock instead of sleeping."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock
        self.calls: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)
        if self.clock is not None:
            self.clock.now += delay


class FakeGeocoder:
    def __init__(self, results: Optional[Dict[str, GeocodeResult]] = None):
        self.results = results or {}
        self.calls: List[str] = []

    async def search(self, text: str) -> Optional[GeocodeResult]:
        self.calls.append(text)
        return self.results.get(text.strip().lower())
