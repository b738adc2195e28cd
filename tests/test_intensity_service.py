from __future__ import annotations

from datetime import timedelta

import pytest

from globenews.models.news_items import Category, MergedGroup
from globenews.services.intensity_service import (
    IntensityService,
    describe_intensity,
    keyword_score,
)
from tests.fixtures import T0, make_raw_item


@pytest.fixture
def service() -> IntensityService:
    return IntensityService(
        source_count_weight=20.0,
        tone_weight=10.0,
        recency_decay_hours=24.0,
        clock=lambda: T0,
    )


def test_keyword_score_sums_whole_words_and_caps():
    assert keyword_score("Deadly storm leaves thousands stranded") == 20
    assert keyword_score("Breaking: urgent emergency crisis, massacre reported") == 50
    assert keyword_score("Majority vote") == 0


@pytest.mark.parametrize(
    "offset_hours,expected",
    [
        (0, 20.0),
        (-0.5, 20.0),
        (-12, 10.0),
        (-25, 0.0),
        (2, 0.0),
    ],
)
def test_recency_bonus(service, offset_hours, expected):
    assert service.recency_bonus(T0 + timedelta(hours=offset_hours)) == pytest.approx(expected)


def test_single_quiet_old_item_scores_low(service):
    item = make_raw_item("Council publishes minutes", offset_hours=-48)

    # 1 source × 20, no tone, no keywords, no recency, technology × 0.9 → 18/150
    assert service.score(item, 1, Category.TECHNOLOGY) == 12


def test_score_is_clamped_to_100(service):
    item = make_raw_item("Breaking: deadly catastrophic massacre", sentiment_tone=-15.0)

    assert service.score(item, 25, Category.CONFLICT) == 100


def test_more_sources_raise_intensity(service):
    item = make_raw_item("Magnitude 7.1 earthquake hits Tokyo")

    single = service.score(item, 1, Category.DISASTER)
    double = service.score(item, 2, Category.DISASTER)

    # (20 + 20) × 1.4 = 56 → 37; (40 + 20) × 1.4 = 84 → 56
    assert single == 37
    assert double == 56


def test_zero_source_count_counts_as_one(service):
    item = make_raw_item("Council publishes minutes", offset_hours=-48)

    assert service.score(item, 0, Category.ECONOMICS) == service.score(item, 1, Category.ECONOMICS)


def test_tone_beyond_ten_still_ranks_higher(service):
    louder = make_raw_item("Council publishes minutes", offset_hours=-48, sentiment_tone=-12.0)
    loud = make_raw_item("Council publishes minutes", offset_hours=-48, sentiment_tone=10.0)

    # (20 + 120) → 93; (20 + 100) → 80
    assert service.score(louder, 1, Category.ECONOMICS) == 93
    assert service.score(loud, 1, Category.ECONOMICS) == 80


def test_category_multiplier_applies(service):
    item = make_raw_item("Council publishes minutes", offset_hours=-48)

    assert service.score(item, 3, Category.CONFLICT) > service.score(item, 3, Category.TECHNOLOGY)


def test_score_group_uses_source_count():
    item = make_raw_item("Magnitude 7.1 earthquake hits Tokyo")
    group = MergedGroup(
        canonical_item=item,
        source_names=frozenset({"GDELT", "NewsAPI"}),
        source_urls=frozenset({item.url, "https://other.example.com/quake"}),
        source_count=2,
    )
    service = IntensityService(clock=lambda: T0)

    assert service.score_group(group, Category.DISASTER) == service.score(item, 2, Category.DISASTER)


@pytest.mark.parametrize(
    "intensity,label",
    [(100, "critical"), (90, "critical"), (89, "high"), (75, "high"), (74, "medium"), (50, "medium"), (49, "low"), (25, "low"), (24, "minimal"), (0, "minimal")],
)
def test_describe_intensity(intensity, label):
    assert describe_intensity(intensity) == label
