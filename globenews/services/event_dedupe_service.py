# -*- coding: utf-8 -*-
"""
EventDedupeService — merge duplicate reports of one real-world event
- Greedy single-link clustering against each group's seed, O(n²)
- Items join when: within the time window, within the radius (only when
  both carry coordinates), and normalized titles are similar enough
- Input is stably sorted by (timestamp, source_name) first so the result
  does not depend on adapter completion order
- Each group collapses to its highest-quality member, backfilled from the rest
"""

from __future__ import annotations

import math
import re
from datetime import datetime
from difflib import SequenceMatcher
from typing import Callable, Dict, Iterable, List, Sequence

from globenews.config import ConfigurationError, settings
from globenews.core.logging import get_logger
from globenews.models.news_items import (
    CanonicalEvent,
    Category,
    MergedGroup,
    RawItem,
    RawLocation,
    event_id_for_group,
    utc_now,
)

logger = get_logger().bind(module="event_dedupe")

EARTH_RADIUS_KM = 6371.0
LONG_SUMMARY_CHARS = 50
MAX_AGE_PENALTY = 1000.0

QUALITY_COORDINATES = 100.0
QUALITY_IMAGE = 50.0
QUALITY_LONG_SUMMARY = 30.0
QUALITY_TONE = 20.0

_PUNCT_RE = re.compile(r"[^\w\s]")
_WS_RE = re.compile(r"\s+")

# headline wording that differs between outlets for the same event
HEADLINE_SYNONYMS: Dict[str, str] = {
    "quake": "earthquake",
    "quakes": "earthquakes",
    "temblor": "earthquake",
    "strikes": "hits",
    "strike": "hit",
    "slams": "hits",
    "rocks": "hits",
    "jolts": "hits",
    "kills": "killed",
    "dies": "dead",
    "died": "dead",
    "blaze": "fire",
    "polls": "election",
}


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def normalize_title(title: str) -> str:
    """
    Lowercase, strip punctuation, collapse whitespace, fold headline synonyms.

    >>> normalize_title("7.1 Quake strikes near Tokyo!")
    '71 earthquake hits near tokyo'
    """
    cleaned = _WS_RE.sub(" ", _PUNCT_RE.sub("", (title or "").lower())).strip()
    return " ".join(HEADLINE_SYNONYMS.get(word, word) for word in cleaned.split(" ") if word)


def title_similarity(a: str, b: str) -> float:
    if not a or not b:
        return 0.0
    return SequenceMatcher(None, a, b).ratio()


def quality_score(item: RawItem, now: datetime) -> float:
    score = 0.0
    if item.has_coordinates:
        score += QUALITY_COORDINATES
    if item.image_url:
        score += QUALITY_IMAGE
    if item.summary and len(item.summary) > LONG_SUMMARY_CHARS:
        score += QUALITY_LONG_SUMMARY
    if item.sentiment_tone is not None:
        score += QUALITY_TONE
    age_minutes = max(0.0, (now - item.timestamp).total_seconds() / 60)
    return score - min(age_minutes, MAX_AGE_PENALTY)


class _Candidate:
    __slots__ = ("item", "normalized_title")

    def __init__(self, item: RawItem):
        self.item = item
        self.normalized_title = normalize_title(item.title)


class EventDedupeService:
    def __init__(
        self,
        *,
        threshold: float = settings.DEDUP_FUZZY_THRESHOLD,
        radius_km: float = settings.DEDUP_RADIUS_KM,
        time_window_hours: float = settings.DEDUP_TIME_WINDOW_HOURS,
        clock: Callable[[], datetime] = utc_now,
    ):
        if not 0 < threshold <= 1:
            raise ConfigurationError(f"similarity threshold must be in (0, 1], got {threshold}")
        if radius_km < 0 or time_window_hours < 0:
            raise ConfigurationError("dedup radius and time window must be non-negative")
        self.threshold = threshold
        self.radius_km = radius_km
        self.time_window_hours = time_window_hours
        self._clock = clock

    def is_similar(self, a: _Candidate, b: _Candidate) -> bool:
        hours_apart = abs((a.item.timestamp - b.item.timestamp).total_seconds()) / 3600
        if hours_apart > self.time_window_hours:
            return False

        if a.item.has_coordinates and b.item.has_coordinates:
            distance = haversine_km(
                a.item.location.lat, a.item.location.lng, b.item.location.lat, b.item.location.lng
            )
            if distance > self.radius_km:
                return False

        return title_similarity(a.normalized_title, b.normalized_title) >= self.threshold

    def deduplicate(self, items: Iterable[RawItem]) -> List[MergedGroup]:
        ordered = sorted(items, key=lambda item: (item.timestamp, item.source_name))
        if not ordered:
            return []

        candidates = [_Candidate(item) for item in ordered]
        processed = [False] * len(candidates)
        groups: List[MergedGroup] = []

        for i, seed in enumerate(candidates):
            if processed[i]:
                continue
            processed[i] = True
            members = [seed]
            for j in range(i + 1, len(candidates)):
                if processed[j]:
                    continue
                if self.is_similar(seed, candidates[j]):
                    members.append(candidates[j])
                    processed[j] = True
            groups.append(self.merge_group([m.item for m in members]))

        logger.info("dedup_complete", input_items=len(candidates), groups=len(groups))
        return groups

    def merge_group(self, members: Sequence[RawItem]) -> MergedGroup:
        now = self._clock()
        canonical = members[0]
        best = quality_score(canonical, now)
        for item in members[1:]:
            score = quality_score(item, now)
            if score > best:
                canonical, best = item, score

        updates: Dict[str, object] = {}
        if not canonical.has_coordinates:
            donor = next((m for m in members if m.has_coordinates), None)
            if donor is not None:
                updates["location"] = RawLocation(
                    lat=donor.location.lat,
                    lng=donor.location.lng,
                    name=(canonical.location.name if canonical.location else None) or donor.location.name,
                )
        elif canonical.location.name is None:
            named = next((m for m in members if m.location and m.location.name), None)
            if named is not None:
                updates["location"] = canonical.location.model_copy(update={"name": named.location.name})
        if not canonical.image_url:
            image = next((m.image_url for m in members if m.image_url), None)
            if image:
                updates["image_url"] = image
        if canonical.sentiment_tone is None:
            tone = next((m.sentiment_tone for m in members if m.sentiment_tone is not None), None)
            if tone is not None:
                updates["sentiment_tone"] = tone
        longest = max((m.summary or "" for m in members), key=len)
        if len(longest) > len(canonical.summary or ""):
            updates["summary"] = longest
        if updates:
            canonical = canonical.model_copy(update=updates)

        source_names = frozenset(m.source_name for m in members)
        return MergedGroup(
            canonical_item=canonical,
            source_names=source_names,
            source_urls=frozenset(m.url for m in members),
            source_count=len(source_names),
        )


def to_canonical_events(
    groups: Iterable[MergedGroup],
    classify: Callable[[RawItem], Category],
    score: Callable[[MergedGroup, Category], int],
) -> List[CanonicalEvent]:
    """
    Build CanonicalEvents from merged groups. Groups still lacking coordinates
    get the (0, 0) sentinel; filtering them is the caller's job.
    """
    events: List[CanonicalEvent] = []
    for group in groups:
        item = group.canonical_item
        category = classify(item)
        lat = item.location.lat if item.has_coordinates else 0.0
        lng = item.location.lng if item.has_coordinates else 0.0
        events.append(
            CanonicalEvent(
                id=event_id_for_group(group),
                title=item.title,
                summary=item.summary or "",
                lat=lat,
                lng=lng,
                timestamp=item.timestamp,
                source_label=", ".join(sorted(group.source_names)),
                category=category,
                intensity=score(group, category),
                url=item.url,
                image_url=item.image_url,
                sentiment_tone=item.sentiment_tone,
                source_count=group.source_count,
            )
        )
    return events
