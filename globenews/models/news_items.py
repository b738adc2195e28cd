"""
Domain models shared by the aggregation pipeline.

RawItem is what a source adapter emits, MergedGroup is one duplicate
cluster, CanonicalEvent is what gets persisted.
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Literal, Optional
from urllib.parse import urlsplit, urlunsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Category(str, Enum):
    # Declaration order is the classifier tie-break order.
    CONFLICT = "conflict"
    POLITICS = "politics"
    DISASTER = "disaster"
    ECONOMICS = "economics"
    HEALTH = "health"
    TECHNOLOGY = "technology"
    ENVIRONMENT = "environment"


class RawLocation(BaseModel):
    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    lat: Optional[float] = None
    lng: Optional[float] = None
    name: Optional[str] = None

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None


class RawItem(BaseModel):
    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    title: str = Field(..., min_length=1)
    summary: Optional[str] = None
    url: str = Field(..., min_length=1)
    timestamp: datetime
    source_name: str
    image_url: Optional[str] = None
    location: Optional[RawLocation] = None
    sentiment_tone: Optional[float] = None
    theme_hints: List[str] = Field(default_factory=list)

    @field_validator("timestamp")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @property
    def has_coordinates(self) -> bool:
        return self.location is not None and self.location.has_coordinates


class MergedGroup(BaseModel):
    model_config = ConfigDict(frozen=True)

    canonical_item: RawItem
    source_names: FrozenSet[str]
    source_urls: FrozenSet[str]
    source_count: int = Field(..., ge=1)

    @model_validator(mode="after")
    def _count_matches_sources(self) -> "MergedGroup":
        if self.source_count != len(self.source_names):
            raise ValueError("source_count must equal the number of distinct source names")
        return self


class GeocodeResult(BaseModel):
    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    lat: float
    lng: float
    display_name: str
    confidence: float = Field(0.5, ge=0.0, le=1.0)


LocationType = Literal["country", "city", "region", "organization"]


class ExtractedLocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    lat: float
    lng: float
    confidence: float = Field(..., ge=0.0, le=1.0)
    type: LocationType


class GeoExtraction(BaseModel):
    locations: List[ExtractedLocation] = Field(default_factory=list)
    confidence: float = 0.0
    method: Literal["pattern", "nlp"] = "nlp"


class CanonicalEvent(BaseModel):
    id: str
    title: str
    summary: str = ""
    lat: float
    lng: float
    timestamp: datetime
    source_label: str
    category: Category
    intensity: int = Field(..., ge=0, le=100)
    url: str
    image_url: Optional[str] = None
    sentiment_tone: Optional[float] = None
    source_count: int = Field(1, ge=1)

    @property
    def is_unresolved(self) -> bool:
        return self.lat == 0 and self.lng == 0


class AggregationResult(BaseModel):
    total_fetched: int = 0
    total_groups: int = 0
    geocoded: int = 0
    dropped_unresolved: int = 0
    persisted: int = 0
    failed_persist: int = 0
    sources: Dict[str, str] = Field(default_factory=dict)
    duration_ms: int = 0


def normalize_event_url(url: str) -> str:
    """
    Trim whitespace and trailing slashes, lowercase scheme and host only.

    >>> normalize_event_url(" HTTPS://News.Example.com/a?id=AbC/ ")
    'https://news.example.com/a?id=AbC'
    """
    parts = urlsplit(url.strip().rstrip("/"))
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), parts.path, parts.query, parts.fragment))


def event_id_for_url(url: str) -> str:
    """SHA-1 of the normalized URL."""
    return hashlib.sha1(normalize_event_url(url).encode("utf-8")).hexdigest()


def event_id_for_group(group: MergedGroup) -> str:
    """Event identity: SHA-1 of the smallest normalized member URL of the group."""
    return event_id_for_url(min(normalize_event_url(url) for url in group.source_urls))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
