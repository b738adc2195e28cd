"""
Gazetteer registry loader.

Provides country/city centroids, organization membership, market question
patterns and market category keywords for the location extraction layer.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from functools import cached_property, lru_cache
from pathlib import Path
from typing import Dict, List, Optional, Pattern, Tuple

import yaml

from globenews.core.logging import get_logger

logger = get_logger()

THIS_FILE = Path(__file__).resolve()
PACKAGE_DIR = THIS_FILE.parent.parent  # globenews
REPO_ROOT = PACKAGE_DIR.parent
GAZETTEER_YML = REPO_ROOT / "configs" / "gazetteer.yml"


@dataclass(frozen=True)
class Place:
    name: str
    type: str  # country | city | region
    lat: float
    lng: float
    aliases: Tuple[str, ...]
    country: Optional[str] = None


@dataclass(frozen=True)
class Organization:
    name: str
    aliases: Tuple[str, ...]
    members: Tuple[str, ...]


@dataclass(frozen=True)
class MarketPattern:
    regex: Pattern[str]
    location: str
    confidence: float


@dataclass(frozen=True)
class Gazetteer:
    places: Tuple[Place, ...]
    organizations: Tuple[Organization, ...]
    market_patterns: Tuple[MarketPattern, ...]
    market_categories: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    common_locations: Tuple[str, ...] = ()

    @cached_property
    def alias_index(self) -> Dict[str, Place]:
        """
        {normalized alias: Place}. Cities are indexed after countries so a
        city alias never shadows a country alias of the same spelling.
        """
        index: Dict[str, Place] = {}
        for place in self.places:
            for alias in place.aliases:
                index.setdefault(alias, place)
        return index

    def find_place(self, name: str) -> Optional[Place]:
        return self.alias_index.get(normalize_alias(name))


def normalize_alias(value: str) -> str:
    """
    Normalize aliases and search text using NFKD + casefold + whitespace collapse.
    """
    if not isinstance(value, str):
        return ""
    text = unicodedata.normalize("NFKD", value.strip().casefold())
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    sanitized = "".join(ch if ch.isalnum() else " " for ch in text)
    return " ".join(sanitized.split())


def _read_config(path: Path) -> Dict[str, object]:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.error("gazetteer_config_not_found", path=str(path))
        return {}

    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        logger.error("gazetteer_config_parse_error", path=str(path), error=str(exc))
        raise

    if not isinstance(data, dict):
        logger.error(
            "gazetteer_config_invalid_root",
            path=str(path),
            root_type=type(data).__name__,
        )
        raise ValueError("gazetteer config root must be a mapping")
    return data


def _coerce_aliases(entry: Dict[str, object], fallback: str) -> Tuple[str, ...]:
    raw = entry.get("aliases") or []
    aliases: List[str] = []
    if isinstance(raw, list):
        for candidate in raw:
            norm = normalize_alias(str(candidate))
            if norm:
                aliases.append(norm)
    if not aliases and fallback:
        aliases.append(normalize_alias(fallback))
    return tuple(dict.fromkeys(aliases))


def _parse_place(entry: object, place_type: str) -> Optional[Place]:
    if not isinstance(entry, dict):
        logger.warning("gazetteer_invalid_entry", section=place_type, entry=entry)
        return None
    name = str(entry.get("name") or "").strip()
    try:
        lat = float(entry["lat"])
        lng = float(entry["lng"])
    except (KeyError, TypeError, ValueError):
        logger.warning("gazetteer_entry_missing_coordinates", section=place_type, name=name)
        return None
    if not name:
        logger.warning("gazetteer_entry_missing_name", section=place_type, entry=entry)
        return None
    return Place(
        name=name,
        type=place_type,
        lat=lat,
        lng=lng,
        aliases=_coerce_aliases(entry, name),
        country=entry.get("country") if place_type != "country" else name,
    )


@lru_cache(maxsize=4)
def _load_gazetteer_from_path(path_str: str) -> Gazetteer:
    data = _read_config(Path(path_str))

    places: List[Place] = []
    for section, place_type in (("countries", "country"), ("cities", "city"), ("regions", "region")):
        for entry in data.get(section) or []:
            parsed = _parse_place(entry, place_type)
            if parsed:
                places.append(parsed)

    organizations: List[Organization] = []
    for entry in data.get("organizations") or []:
        if not isinstance(entry, dict) or not entry.get("name"):
            logger.warning("gazetteer_invalid_entry", section="organizations", entry=entry)
            continue
        name = str(entry["name"])
        organizations.append(
            Organization(
                name=name,
                aliases=_coerce_aliases(entry, name),
                members=tuple(str(m) for m in entry.get("members") or []),
            )
        )

    patterns: List[MarketPattern] = []
    for entry in data.get("market_patterns") or []:
        if not isinstance(entry, dict):
            continue
        try:
            regex = re.compile(str(entry["pattern"]), re.IGNORECASE)
        except (KeyError, re.error) as exc:
            logger.warning("gazetteer_invalid_market_pattern", entry=entry, error=str(exc))
            continue
        patterns.append(
            MarketPattern(
                regex=regex,
                location=str(entry.get("location") or ""),
                confidence=float(entry.get("confidence", 0.9)),
            )
        )

    categories: Dict[str, Tuple[str, ...]] = {}
    raw_categories = data.get("market_categories") or {}
    if isinstance(raw_categories, dict):
        for key, words in raw_categories.items():
            if isinstance(words, list):
                categories[str(key)] = tuple(str(w).lower() for w in words)

    common = tuple(str(n) for n in data.get("common_locations") or [])

    logger.info(
        "gazetteer_loaded",
        path=path_str,
        places=len(places),
        organizations=len(organizations),
        market_patterns=len(patterns),
    )
    return Gazetteer(
        places=tuple(places),
        organizations=tuple(organizations),
        market_patterns=tuple(patterns),
        market_categories=categories,
        common_locations=common,
    )


def load_gazetteer(path: Optional[Path] = None) -> Gazetteer:
    cfg_path = Path(path) if path else GAZETTEER_YML
    return _load_gazetteer_from_path(str(cfg_path.resolve()))


def clear_gazetteer_cache() -> None:
    _load_gazetteer_from_path.cache_clear()
