"""
Location extraction from free text (headlines, summaries, market questions).

Layers, highest confidence first:
  1. market question patterns (regex → country)
  2. organization mentions (→ up to three member countries)
  3. place-name tagging (capitalised phrases after locative prepositions)
     resolved against the gazetteer, then a plain alias scan of the text

No network access happens here; unresolved tagged phrases are handed to
the geocoding service by the caller.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Dict, List, Optional, Tuple

from globenews.core.logging import get_logger
from globenews.models.gazetteer import Gazetteer, Place, load_gazetteer, normalize_alias
from globenews.models.news_items import ExtractedLocation, GeoExtraction

logger = get_logger()

ORGANIZATION_MEMBER_LIMIT = 3
ORGANIZATION_CONFIDENCE = 0.75
TAGGED_PLACE_CONFIDENCE = 0.8
ALIAS_SCAN_CONFIDENCE = 0.7
RELEVANCE_MIN_CONFIDENCE = 0.3

_CAP_WORD = r"[A-Z][\w'\-\.]*"
_LOCATIVE_RE = re.compile(
    r"\b(?:in|near|at|from|outside|across|off)\s+"
    rf"((?:the\s+)?{_CAP_WORD}(?:\s+(?:{_CAP_WORD}|of|de|la|del)){{0,3}})"
)
_MULTIWORD_PROPER_RE = re.compile(rf"\b({_CAP_WORD}(?:\s+{_CAP_WORD}){{1,3}})\b")
_TRAILING_JUNK_RE = re.compile(r"(?:\s+(?:of|de|la|del))+$")


def _clamp_confidence(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def _padded(text: str) -> str:
    normalized = normalize_alias(text)
    return f" {normalized} " if normalized else ""


def _to_location(place: Place, confidence: float, loc_type: Optional[str] = None) -> ExtractedLocation:
    return ExtractedLocation(
        name=place.name,
        lat=place.lat,
        lng=place.lng,
        confidence=_clamp_confidence(confidence),
        type=loc_type or place.type,
    )


def _add_unique(target: List[ExtractedLocation], candidate: ExtractedLocation) -> bool:
    # same coordinates → same location, first (higher layer) wins
    for existing in target:
        if existing.lat == candidate.lat and existing.lng == candidate.lng:
            return False
    target.append(candidate)
    return True


def tag_place_phrases(text: str) -> Tuple[List[str], List[str]]:
    """
    Lightweight proper-noun tagger.

    Returns (locative_phrases, proper_phrases): capitalised phrases following
    a locative preposition ("near Tokyo Bay"), and other multi-word
    capitalised names ("South Korea").
    """
    locative: List[str] = []
    for match in _LOCATIVE_RE.finditer(text or ""):
        phrase = re.sub(r"^the\s+", "", match.group(1).strip())
        phrase = _TRAILING_JUNK_RE.sub("", phrase).strip(" .")
        if phrase:
            locative.append(phrase)
    proper = [m.group(1).strip(" .") for m in _MULTIWORD_PROPER_RE.finditer(text or "")]
    return list(dict.fromkeys(locative)), list(dict.fromkeys(proper))


class LocationExtractor:
    def __init__(self, gazetteer: Optional[Gazetteer] = None):
        self.gazetteer = gazetteer or load_gazetteer()
        self._countries_by_name: Dict[str, Place] = {
            place.name.lower(): place for place in self.gazetteer.places
        }

    # -- layers -------------------------------------------------------------

    def _match_patterns(self, text: str) -> List[ExtractedLocation]:
        found: List[ExtractedLocation] = []
        for pattern in self.gazetteer.market_patterns:
            if not pattern.regex.search(text):
                continue
            place = self._countries_by_name.get(pattern.location.lower())
            if place is None:
                logger.debug("location_pattern_unknown_place", location=pattern.location)
                continue
            _add_unique(found, _to_location(place, pattern.confidence, "country"))
        return found

    def _match_organizations(self, padded_text: str) -> List[ExtractedLocation]:
        found: List[ExtractedLocation] = []
        for org in self.gazetteer.organizations:
            if not any(f" {alias} " in padded_text for alias in org.aliases):
                continue
            for member in org.members[:ORGANIZATION_MEMBER_LIMIT]:
                place = self._countries_by_name.get(member.lower())
                if place is not None:
                    _add_unique(found, _to_location(place, ORGANIZATION_CONFIDENCE, "organization"))
        return found

    def _resolve_phrase(self, phrase: str) -> Optional[Place]:
        # longest sub-span first: "Earthquake Hits Tokyo Bay" → ... → "Tokyo Bay" → "Tokyo"
        words = phrase.split()
        for size in range(len(words), 0, -1):
            for start in range(0, len(words) - size + 1):
                place = self.gazetteer.find_place(" ".join(words[start:start + size]))
                if place is not None:
                    return place
        return None

    def _match_places(self, text: str, padded_text: str) -> Tuple[List[ExtractedLocation], List[str]]:
        found: List[ExtractedLocation] = []
        unresolved: List[str] = []
        locative, proper = tag_place_phrases(text)
        for phrase in locative + proper:
            place = self._resolve_phrase(phrase)
            if place is not None:
                _add_unique(found, _to_location(place, TAGGED_PLACE_CONFIDENCE))
            elif phrase in locative:
                unresolved.append(phrase)

        for alias, place in self.gazetteer.alias_index.items():
            if f" {alias} " in padded_text:
                _add_unique(found, _to_location(place, ALIAS_SCAN_CONFIDENCE))
        return found, unresolved

    # -- public API ---------------------------------------------------------

    def extract_with_unresolved(self, text: str) -> Tuple[GeoExtraction, List[str]]:
        if not text or not text.strip():
            return GeoExtraction(), []
        padded_text = _padded(text)

        locations: List[ExtractedLocation] = []
        pattern_hits = self._match_patterns(text)
        for loc in pattern_hits:
            _add_unique(locations, loc)
        for loc in self._match_organizations(padded_text):
            _add_unique(locations, loc)
        place_hits, unresolved = self._match_places(text, padded_text)
        for loc in place_hits:
            _add_unique(locations, loc)

        confidence = (
            sum(loc.confidence for loc in locations) / len(locations) if locations else 0.0
        )
        method = "pattern" if pattern_hits else "nlp"
        return GeoExtraction(locations=locations, confidence=confidence, method=method), unresolved

    def extract(self, text: str) -> GeoExtraction:
        extraction, _ = self.extract_with_unresolved(text)
        return extraction

    def extract_location_names(self, text: str) -> List[str]:
        """
        Candidate place names for geocoding: gazetteer hits by descending
        confidence, then tagged phrases the gazetteer does not know.
        """
        extraction, unresolved = self.extract_with_unresolved(text)
        ranked = sorted(extraction.locations, key=lambda loc: -loc.confidence)
        names = [loc.name for loc in ranked] + unresolved
        seen: Dict[str, str] = {}
        for name in names:
            seen.setdefault(name.lower(), name)
        return list(seen.values())

    def best_location(self, text: str) -> Optional[ExtractedLocation]:
        extraction = self.extract(text)
        if not extraction.locations:
            return None
        return max(extraction.locations, key=lambda loc: loc.confidence)

    def is_geographically_relevant(self, text: str) -> bool:
        extraction = self.extract(text)
        return bool(extraction.locations) and extraction.confidence > RELEVANCE_MIN_CONFIDENCE

    def detect_market_category(self, text: str) -> str:
        lowered = (text or "").lower()
        for category, keywords in self.gazetteer.market_categories.items():
            for keyword in keywords:
                if re.search(rf"\b{re.escape(keyword)}\b", lowered):
                    return category
        return "other"


@lru_cache(maxsize=1)
def get_location_extractor() -> LocationExtractor:
    return LocationExtractor()
