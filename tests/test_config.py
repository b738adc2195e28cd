from __future__ import annotations

import pytest

from globenews import config
from globenews.config import DEFAULT_CATEGORY_MULTIPLIERS, Settings, require_database_url


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def test_defaults():
    settings = _settings()

    assert settings.DEDUP_FUZZY_THRESHOLD == 0.7
    assert settings.DEDUP_RADIUS_KM == 50.0
    assert settings.MAX_GEOCODE_PER_PASS == 20
    assert [feed.name for feed in settings.RSS_FEEDS] == ["Reuters World", "AP News", "BBC World"]
    assert settings.INTENSITY_CATEGORY_MULTIPLIERS == DEFAULT_CATEGORY_MULTIPLIERS


@pytest.mark.parametrize("threshold", [0, -0.1, 1.01])
def test_threshold_outside_unit_interval_is_rejected(threshold):
    with pytest.raises(ValueError, match="DEDUP_FUZZY_THRESHOLD"):
        _settings(DEDUP_FUZZY_THRESHOLD=threshold)


@pytest.mark.parametrize(
    "field", ["DEDUP_RADIUS_KM", "DEDUP_TIME_WINDOW_HOURS", "INTENSITY_RECENCY_DECAY_HOURS"]
)
def test_negative_windows_are_rejected(field):
    with pytest.raises(ValueError, match="non-negative"):
        _settings(**{field: -1})


def test_multipliers_must_cover_every_category():
    with pytest.raises(ValueError, match="missing categories"):
        _settings(INTENSITY_CATEGORY_MULTIPLIERS={"conflict": 2.0})


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("DEDUP_RADIUS_KM", "25")
    monkeypatch.setenv("NEWSAPI_KEY", "from-env")

    settings = _settings()

    assert settings.DEDUP_RADIUS_KM == 25.0
    assert settings.NEWSAPI_KEY == "from-env"


def test_require_database_url(monkeypatch):
    monkeypatch.setattr(config.settings, "DATABASE_URL", None)
    with pytest.raises(RuntimeError, match="DATABASE_URL is not set"):
        require_database_url()

    monkeypatch.setattr(config.settings, "DATABASE_URL", "postgresql://db/news")
    assert require_database_url() == "postgresql://db/news"


@pytest.mark.parametrize("field", ["NEWSAPI_RATE_LIMIT_PER_MIN", "RSS_RATE_LIMIT_PER_MIN"])
def test_rate_limits_must_be_positive(field):
    with pytest.raises(ValueError, match="at least one request per minute"):
        _settings(**{field: 0})
