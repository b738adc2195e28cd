"""
Persistence adapters for canonical events and the durable geocoding cache.

Upsert semantics on conflict by event id: keep the max intensity and bump
source_count, never insert a second row for the same id.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence

from globenews.core.logging import get_logger
from globenews.models.news_items import CanonicalEvent, GeocodeResult
from globenews.services.db_service import execute, execute_with_conn, fetchrow, run_in_transaction

logger = get_logger().bind(module="event_repository")


@dataclass
class UpsertResult:
    upserted: int = 0
    failed: int = 0
    failed_ids: List[str] = field(default_factory=list)


class EventStore(Protocol):
    async def upsert_events(self, events: Sequence[CanonicalEvent]) -> UpsertResult: ...


class GeocodeStore(Protocol):
    async def get(self, name: str) -> Optional[GeocodeResult]: ...
    async def save(self, name: str, result: GeocodeResult) -> None: ...


UPSERT_EVENT_SQL = """
INSERT INTO events (
    id, title, summary, lat, lng, timestamp, source, category,
    intensity, url, image_url, sentiment_tone, source_count,
    created_at, updated_at
)
VALUES ($1,$2,$3,$4,$5,$6,$7,$8,$9,$10,$11,$12,$13,NOW(),NOW())
ON CONFLICT (id) DO UPDATE
SET title = EXCLUDED.title,
    summary = EXCLUDED.summary,
    intensity = GREATEST(events.intensity, EXCLUDED.intensity),
    source_count = events.source_count + 1,
    updated_at = NOW();
"""


class PostgresEventStore:
    async def upsert_events(self, events: Sequence[CanonicalEvent]) -> UpsertResult:
        result = UpsertResult()
        if not events:
            return result
        async with run_in_transaction() as conn:
            for event in events:
                try:
                    # savepoint per row so one bad row doesn't poison the batch
                    async with conn.transaction():
                        await execute_with_conn(
                            conn,
                            UPSERT_EVENT_SQL,
                            event.id,
                            event.title,
                            event.summary,
                            event.lat,
                            event.lng,
                            event.timestamp,
                            event.source_label,
                            event.category.value,
                            event.intensity,
                            event.url,
                            event.image_url,
                            event.sentiment_tone,
                            event.source_count,
                        )
                    result.upserted += 1
                except Exception as exc:
                    result.failed += 1
                    result.failed_ids.append(event.id)
                    logger.warning("event_upsert_failed", event_id=event.id, error=str(exc))
        logger.info("events_upserted", upserted=result.upserted, failed=result.failed)
        return result


class PostgresGeocodeStore:
    async def get(self, name: str) -> Optional[GeocodeResult]:
        row = await fetchrow(
            """
            SELECT lat, lng, display_name, confidence
            FROM geocoding_cache
            WHERE location_name = $1
            """,
            name,
        )
        if not row:
            return None
        return GeocodeResult(
            lat=float(row["lat"]),
            lng=float(row["lng"]),
            display_name=row["display_name"] or name,
            confidence=float(row["confidence"]) if row["confidence"] is not None else 0.5,
        )

    async def save(self, name: str, result: GeocodeResult) -> None:
        await execute(
            """
            INSERT INTO geocoding_cache (location_name, lat, lng, display_name, confidence)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (location_name) DO UPDATE
            SET lat = EXCLUDED.lat,
                lng = EXCLUDED.lng,
                display_name = EXCLUDED.display_name,
                confidence = EXCLUDED.confidence;
            """,
            name,
            result.lat,
            result.lng,
            result.display_name,
            result.confidence,
        )


class InMemoryEventStore:
    """Same merge semantics as the Postgres store; used for dry runs."""

    def __init__(self) -> None:
        self.events: Dict[str, CanonicalEvent] = {}

    async def upsert_events(self, events: Sequence[CanonicalEvent]) -> UpsertResult:
        result = UpsertResult()
        for event in events:
            existing = self.events.get(event.id)
            if existing is None:
                self.events[event.id] = event
            else:
                self.events[event.id] = event.model_copy(
                    update={
                        "intensity": max(existing.intensity, event.intensity),
                        "source_count": existing.source_count + 1,
                    }
                )
            result.upserted += 1
        return result


class InMemoryGeocodeStore:
    def __init__(self) -> None:
        self.rows: Dict[str, GeocodeResult] = {}

    async def get(self, name: str) -> Optional[GeocodeResult]:
        return self.rows.get(name)

    async def save(self, name: str, result: GeocodeResult) -> None:
        self.rows[name] = result
