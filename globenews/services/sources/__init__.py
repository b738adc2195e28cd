"""
Source adapters.

Each adapter exposes `name`, `is_available()` and `fetch()`, and owns its
rate limiter, quota counters and cache TTL.
"""

from globenews.services.sources.base import QuotaCounter, SourceAdapter
from globenews.services.sources.eventregistry_source import EventRegistrySource
from globenews.services.sources.gdelt_source import GdeltSource
from globenews.services.sources.newsapi_source import NewsApiSource
from globenews.services.sources.polymarket_source import PolymarketSource
from globenews.services.sources.rss_source import RssSource

__all__ = [
    "SourceAdapter",
    "QuotaCounter",
    "GdeltSource",
    "NewsApiSource",
    "EventRegistrySource",
    "RssSource",
    "PolymarketSource",
]
