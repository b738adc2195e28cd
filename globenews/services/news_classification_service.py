# -*- coding: utf-8 -*-
"""
NewsClassificationService — keyword + theme-hint category scoring
- Static ordered table: category → (keywords, weight)
- Whole-word matches over title + summary, case-folded
- Feed theme hints add a fixed bonus larger than any keyword weight
- Strongly negative tone nudges conflict and disaster
- Highest score wins; ties go to the category declared first
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Pattern, Tuple

from globenews.core.logging import get_logger
from globenews.models.news_items import Category, RawItem

logger = get_logger()

THEME_HINT_BONUS = 3.0
NEGATIVE_TONE_THRESHOLD = -5.0
NEGATIVE_TONE_BONUS = 1.0
DEFAULT_CATEGORY = Category.POLITICS


@dataclass(frozen=True)
class CategoryDefinition:
    category: Category
    keywords: Tuple[str, ...]
    weight: float


CATEGORY_DEFINITIONS: Tuple[CategoryDefinition, ...] = (
    CategoryDefinition(
        Category.CONFLICT,
        (
            "war", "military", "attack", "bomb", "explosion", "troops", "soldier",
            "battle", "conflict", "violence", "strike", "missile", "weapon", "army",
            "navy", "air force", "combat", "killed", "casualties", "hostage",
            "terrorist", "terrorism", "insurgent", "rebel", "militia", "invasion",
            "offensive", "defense", "ceasefire", "airstrike", "drone strike",
            "ambush", "shootout", "gunfire", "assassination", "warfare",
        ),
        1.5,
    ),
    CategoryDefinition(
        Category.POLITICS,
        (
            "election", "vote", "president", "prime minister", "parliament",
            "congress", "senate", "government", "minister", "policy", "legislation",
            "law", "bill", "campaign", "candidate", "democrat", "republican", "party",
            "coalition", "opposition", "referendum", "diplomat", "diplomacy",
            "summit", "treaty", "sanction", "ambassador", "foreign affairs",
            "state department", "political", "governor", "mayor", "council",
            "judiciary", "supreme court",
        ),
        1.2,
    ),
    CategoryDefinition(
        Category.DISASTER,
        (
            "earthquake", "quake", "flood", "hurricane", "tornado", "tsunami",
            "volcano", "wildfire", "fire", "storm", "cyclone", "typhoon", "drought",
            "landslide", "avalanche", "disaster", "emergency", "evacuation", "rescue",
            "casualties", "damage", "destruction", "collapse", "accident", "crash",
            "derailment", "explosion", "blast", "survivors", "death toll", "missing",
            "natural disaster", "climate disaster", "heatwave", "cold wave", "blizzard",
        ),
        1.4,
    ),
    CategoryDefinition(
        Category.ECONOMICS,
        (
            "economy", "economic", "market", "stock", "trade", "inflation",
            "recession", "gdp", "unemployment", "job", "employment", "bank",
            "banking", "interest rate", "federal reserve", "central bank",
            "currency", "dollar", "euro", "investment", "investor", "profit",
            "revenue", "earnings", "business", "company", "corporation", "merger",
            "acquisition", "bankruptcy", "debt", "deficit", "budget", "tax",
            "tariff", "export", "import", "supply chain",
        ),
        1.0,
    ),
    CategoryDefinition(
        Category.HEALTH,
        (
            "health", "medical", "hospital", "doctor", "patient", "disease", "virus",
            "pandemic", "epidemic", "outbreak", "vaccine", "vaccination", "covid",
            "coronavirus", "infection", "treatment", "medicine", "pharmaceutical",
            "drug", "cancer", "heart", "mental health", "world health", "cdc", "fda",
            "clinical trial", "research", "study", "symptoms", "diagnosis",
            "healthcare", "insurance", "mortality", "life expectancy",
        ),
        1.1,
    ),
    CategoryDefinition(
        Category.TECHNOLOGY,
        (
            "technology", "tech", "ai", "artificial intelligence", "machine learning",
            "software", "hardware", "computer", "internet", "cyber", "hack", "data",
            "digital", "app", "smartphone", "apple", "google", "microsoft", "amazon",
            "facebook", "meta", "tesla", "spacex", "startup", "innovation", "robot",
            "automation", "chip", "semiconductor", "cryptocurrency", "bitcoin",
            "blockchain", "cloud", "privacy", "security", "5g", "electric vehicle",
        ),
        0.9,
    ),
    CategoryDefinition(
        Category.ENVIRONMENT,
        (
            "climate", "environment", "environmental", "global warming", "carbon",
            "emission", "pollution", "renewable", "solar", "wind", "energy", "green",
            "sustainable", "conservation", "wildlife", "species", "biodiversity",
            "deforestation", "ocean", "sea level", "ice", "glacier", "arctic",
            "antarctic", "coral", "reef", "plastic", "recycling", "ecosystem",
            "nature", "forest", "rainforest", "endangered", "extinction",
            "paris agreement", "cop", "climate summit",
        ),
        1.0,
    ),
)

# feed theme token (substring of the upper-cased hint) → category
THEME_CATEGORY_MAP: Dict[str, Category] = {
    "TERROR": Category.CONFLICT,
    "KILL": Category.CONFLICT,
    "PROTEST": Category.POLITICS,
    "MILITARY": Category.CONFLICT,
    "ARMED_CONFLICT": Category.CONFLICT,
    "NATURAL_DISASTER": Category.DISASTER,
    "EARTHQUAKE": Category.DISASTER,
    "FLOOD": Category.DISASTER,
    "EPIDEMIC": Category.HEALTH,
    "HEALTH": Category.HEALTH,
    "ELECTION": Category.POLITICS,
    "GOVERNMENT": Category.POLITICS,
    "ECONOMY": Category.ECONOMICS,
    "BUSINESS": Category.ECONOMICS,
    "TECHNOLOGY": Category.TECHNOLOGY,
    "SCIENCE": Category.TECHNOLOGY,
    "ENVIRONMENT": Category.ENVIRONMENT,
    "CLIMATE": Category.ENVIRONMENT,
}

# substring of the lower-cased source name → category, checked in order
SOURCE_NAME_HINTS: Tuple[Tuple[str, Category], ...] = (
    ("tech", Category.TECHNOLOGY),
    ("business", Category.ECONOMICS),
    ("finance", Category.ECONOMICS),
    ("health", Category.HEALTH),
)


def _compile(keyword: str) -> Pattern[str]:
    return re.compile(rf"\b{re.escape(keyword)}\b")


class NewsClassificationService:
    def __init__(self, definitions: Iterable[CategoryDefinition] = CATEGORY_DEFINITIONS):
        self.definitions = tuple(definitions)
        self._patterns: List[Tuple[Category, float, Pattern[str]]] = [
            (d.category, d.weight, _compile(kw)) for d in self.definitions for kw in d.keywords
        ]

    def score(self, item: RawItem) -> Dict[Category, float]:
        """Raw per-category scores, in declaration order."""
        scores: Dict[Category, float] = {d.category: 0.0 for d in self.definitions}
        text = f"{item.title} {item.summary or ''}".casefold()

        for hint in item.theme_hints:
            upper = hint.upper()
            for token, category in THEME_CATEGORY_MAP.items():
                if token in upper and category in scores:
                    scores[category] += THEME_HINT_BONUS

        for category, weight, pattern in self._patterns:
            matches = len(pattern.findall(text))
            if matches:
                scores[category] += matches * weight

        if item.sentiment_tone is not None and item.sentiment_tone < NEGATIVE_TONE_THRESHOLD:
            for category in (Category.CONFLICT, Category.DISASTER):
                if category in scores:
                    scores[category] += NEGATIVE_TONE_BONUS
        return scores

    def classify(self, item: RawItem) -> Category:
        scores = self.score(item)
        best: Optional[Category] = None
        best_score = 0.0
        for category, value in scores.items():
            # strict > keeps the first-declared category on ties
            if value > best_score:
                best, best_score = category, value

        if best is None:
            best = self._category_from_source(item.source_name)
        logger.debug("news_item_classified", title=item.title[:50], category=best.value, score=best_score)
        return best

    @staticmethod
    def _category_from_source(source_name: str) -> Category:
        lowered = (source_name or "").lower()
        for needle, category in SOURCE_NAME_HINTS:
            if needle in lowered:
                return category
        return DEFAULT_CATEGORY

    def classify_batch(self, items: Iterable[RawItem]) -> List[Tuple[RawItem, Category]]:
        return [(item, self.classify(item)) for item in items]

    def category_distribution(self, items: Iterable[RawItem]) -> Dict[Category, int]:
        distribution: Dict[Category, int] = {category: 0 for category in Category}
        for item in items:
            distribution[self.classify(item)] += 1
        return distribution
