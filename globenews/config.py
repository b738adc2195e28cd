# globenews/config.py
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# globenews/config.py → parents[1] = repo root
REPO_ROOT = Path(__file__).resolve().parents[1]
ENV_FILE = REPO_ROOT / ".env"
load_dotenv(ENV_FILE, override=False)


class ConfigurationError(ValueError):
    """Invalid configuration shape, raised at construction time only."""


class RssFeedConfig(BaseModel):
    name: str
    url: str


DEFAULT_RSS_FEEDS: List[Dict[str, str]] = [
    {"name": "Reuters World", "url": "https://feeds.reuters.com/Reuters/worldNews"},
    {"name": "AP News", "url": "https://rsshub.app/apnews/topics/apf-topnews"},
    {"name": "BBC World", "url": "https://feeds.bbci.co.uk/news/world/rss.xml"},
]

DEFAULT_CATEGORY_MULTIPLIERS: Dict[str, float] = {
    "conflict": 1.5,
    "disaster": 1.4,
    "politics": 1.2,
    "health": 1.1,
    "economics": 1.0,
    "environment": 1.0,
    "technology": 0.9,
}


class Settings(BaseSettings):
    # ---- Infra ----
    APP_VERSION: str = "0.1.0"
    DATABASE_URL: Optional[str] = None
    REDIS_URL: Optional[str] = "redis://localhost:6379/0"
    CACHE_DEFAULT_TTL_S: int = 900
    HTTP_TIMEOUT_S: float = 30.0
    HTTP_USER_AGENT: str = "GlobalNewsAggregator/1.0"

    # ---- GDELT (no credential) ----
    GDELT_BASE_URL: str = "https://api.gdeltproject.org/api/v2"
    GDELT_RATE_LIMIT_PER_MIN: int = 10
    GDELT_CACHE_TTL_S: int = 300

    # ---- NewsAPI ----
    NEWSAPI_BASE_URL: str = "https://newsapi.org/v2"
    NEWSAPI_KEY: Optional[str] = None
    NEWSAPI_DAILY_LIMIT: int = 100
    NEWSAPI_RATE_LIMIT_PER_MIN: int = 5
    NEWSAPI_CACHE_TTL_S: int = 1800

    # ---- EventRegistry ----
    EVENTREGISTRY_BASE_URL: str = "https://eventregistry.org/api/v1"
    EVENTREGISTRY_KEY: Optional[str] = None
    EVENTREGISTRY_MONTHLY_TOKENS: int = 2000
    EVENTREGISTRY_RATE_LIMIT_PER_MIN: int = 5
    EVENTREGISTRY_CACHE_TTL_S: int = 3600

    # ---- Polymarket ----
    POLYMARKET_BASE_URL: str = "https://gamma-api.polymarket.com"
    POLYMARKET_RATE_LIMIT_PER_MIN: int = 30
    POLYMARKET_CACHE_TTL_S: int = 300
    POLYMARKET_ENABLED: bool = True

    # ---- RSS ----
    RSS_FEEDS: List[RssFeedConfig] = Field(
        default_factory=lambda: [RssFeedConfig(**feed) for feed in DEFAULT_RSS_FEEDS]
    )
    RSS_RATE_LIMIT_PER_MIN: int = 30
    RSS_CACHE_TTL_S: int = 600

    # ---- Nominatim ----
    NOMINATIM_BASE_URL: str = "https://nominatim.openstreetmap.org"
    NOMINATIM_USER_AGENT: str = "GlobalNewsAggregator/1.0"
    NOMINATIM_MIN_INTERVAL_S: float = 1.0
    GEOCODE_CACHE_TTL_S: int = 86400

    # ---- Dedup ----
    DEDUP_FUZZY_THRESHOLD: float = 0.7
    DEDUP_RADIUS_KM: float = 50.0
    DEDUP_TIME_WINDOW_HOURS: float = 24.0

    # ---- Intensity ----
    INTENSITY_SOURCE_COUNT_WEIGHT: float = 20.0
    INTENSITY_TONE_WEIGHT: float = 10.0
    INTENSITY_RECENCY_DECAY_HOURS: float = 24.0
    INTENSITY_CATEGORY_MULTIPLIERS: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_CATEGORY_MULTIPLIERS)
    )

    # ---- Orchestrator ----
    MAX_GEOCODE_PER_PASS: int = 20

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("DEDUP_FUZZY_THRESHOLD")
    @classmethod
    def _threshold_in_range(cls, value: float) -> float:
        if not 0.0 < value <= 1.0:
            raise ConfigurationError(f"DEDUP_FUZZY_THRESHOLD must be in (0, 1], got {value}")
        return value

    @field_validator(
        "DEDUP_RADIUS_KM",
        "DEDUP_TIME_WINDOW_HOURS",
        "INTENSITY_RECENCY_DECAY_HOURS",
        "NOMINATIM_MIN_INTERVAL_S",
    )
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ConfigurationError(f"expected a non-negative value, got {value}")
        return value

    @field_validator(
        "GDELT_RATE_LIMIT_PER_MIN",
        "NEWSAPI_RATE_LIMIT_PER_MIN",
        "EVENTREGISTRY_RATE_LIMIT_PER_MIN",
        "POLYMARKET_RATE_LIMIT_PER_MIN",
        "RSS_RATE_LIMIT_PER_MIN",
    )
    @classmethod
    def _positive_rate(cls, value: int) -> int:
        if value < 1:
            raise ConfigurationError(f"rate limits must allow at least one request per minute, got {value}")
        return value

    @model_validator(mode="after")
    def _multipliers_cover_categories(self) -> "Settings":
        missing = set(DEFAULT_CATEGORY_MULTIPLIERS) - set(self.INTENSITY_CATEGORY_MULTIPLIERS)
        if missing:
            raise ConfigurationError(
                f"INTENSITY_CATEGORY_MULTIPLIERS missing categories: {sorted(missing)}"
            )
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()


def require_database_url() -> str:
    """
    Runtime check with a clear message when persistence is requested without a DSN.
    """
    dsn = settings.DATABASE_URL
    if not dsn:
        raise RuntimeError(
            "DATABASE_URL is not set. Check .env "
            f"(attempted to load from: {ENV_FILE})."
        )
    return dsn
