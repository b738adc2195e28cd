"""
Intensity scoring: a bounded 0–100 significance value per canonical item.

    raw = (source_score + tone_score + keyword_score + recency_bonus) × category multiplier
    intensity = clamp(0, 100, round(100 × raw / MAX_EXPECTED))
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Callable, Dict, Mapping, Optional

from globenews.config import settings
from globenews.core.logging import get_logger
from globenews.models.news_items import Category, MergedGroup, RawItem, utc_now

logger = get_logger()

MAX_EXPECTED = 150.0
MAX_COUNTED_SOURCES = 10
KEYWORD_SCORE_CAP = 50.0
RECENCY_FULL_BONUS = 20.0
RECENCY_FULL_WINDOW_HOURS = 1.0

INTENSITY_KEYWORDS: Dict[str, float] = {
    # urgency
    "breaking": 15,
    "urgent": 12,
    "emergency": 15,
    "crisis": 12,
    "mass casualty": 20,
    "massacre": 18,
    "genocide": 20,
    "war crime": 18,
    # scale
    "thousands": 8,
    "millions": 12,
    "billions": 15,
    "nationwide": 10,
    "worldwide": 12,
    "global": 10,
    "unprecedented": 10,
    "historic": 8,
    "record-breaking": 8,
    # severity
    "deadly": 12,
    "fatal": 10,
    "catastrophic": 15,
    "devastating": 12,
    "massive": 8,
    "major": 6,
    "severe": 8,
    "critical": 10,
    # immediacy
    "imminent": 10,
    "immediate": 8,
    "underway": 6,
    "ongoing": 5,
    "escalating": 8,
    "intensifying": 8,
    # impact
    "collapse": 10,
    "explosion": 8,
    "destruction": 10,
    "shutdown": 6,
    "blockade": 8,
}

_KEYWORD_PATTERNS = [
    (re.compile(rf"\b{re.escape(keyword)}\b"), weight) for keyword, weight in INTENSITY_KEYWORDS.items()
]

INTENSITY_THRESHOLDS = (
    (90, "critical"),
    (75, "high"),
    (50, "medium"),
    (25, "low"),
)


def keyword_score(text: str) -> float:
    lowered = (text or "").lower()
    score = 0.0
    for pattern, weight in _KEYWORD_PATTERNS:
        score += weight * len(pattern.findall(lowered))
    return min(score, KEYWORD_SCORE_CAP)


def describe_intensity(intensity: int) -> str:
    for threshold, label in INTENSITY_THRESHOLDS:
        if intensity >= threshold:
            return label
    return "minimal"


class IntensityService:
    def __init__(
        self,
        *,
        source_count_weight: float = settings.INTENSITY_SOURCE_COUNT_WEIGHT,
        tone_weight: float = settings.INTENSITY_TONE_WEIGHT,
        recency_decay_hours: float = settings.INTENSITY_RECENCY_DECAY_HOURS,
        category_multipliers: Optional[Mapping[str, float]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.source_count_weight = source_count_weight
        self.tone_weight = tone_weight
        self.recency_decay_hours = recency_decay_hours
        self.category_multipliers = dict(
            category_multipliers if category_multipliers is not None else settings.INTENSITY_CATEGORY_MULTIPLIERS
        )
        self._clock = clock

    def recency_bonus(self, timestamp: datetime) -> float:
        hours_ago = (self._clock() - timestamp).total_seconds() / 3600
        if hours_ago < 0:
            # clock skew: a future timestamp earns nothing
            return 0.0
        if hours_ago <= RECENCY_FULL_WINDOW_HOURS:
            return RECENCY_FULL_BONUS
        if hours_ago <= self.recency_decay_hours:
            return RECENCY_FULL_BONUS * (1 - hours_ago / self.recency_decay_hours)
        return 0.0

    def score(self, item: RawItem, source_count: int, category: Category) -> int:
        source_score = min(max(source_count, 1), MAX_COUNTED_SOURCES) * self.source_count_weight
        tone_score = 0.0
        if item.sentiment_tone is not None:
            tone_score = abs(item.sentiment_tone) * self.tone_weight
        keywords = keyword_score(f"{item.title} {item.summary or ''}")
        recency = self.recency_bonus(item.timestamp)
        multiplier = self.category_multipliers.get(category.value, 1.0)

        raw = (source_score + tone_score + keywords + recency) * multiplier
        intensity = max(0, min(100, round(100 * raw / MAX_EXPECTED)))
        logger.debug(
            "intensity_scored",
            title=item.title[:40],
            source_score=source_score,
            tone_score=round(tone_score, 1),
            keyword_score=keywords,
            recency=round(recency, 1),
            multiplier=multiplier,
            intensity=intensity,
        )
        return intensity

    def score_group(self, group: MergedGroup, category: Category) -> int:
        return self.score(group.canonical_item, group.source_count, category)
