from __future__ import annotations

from contextlib import asynccontextmanager

import pytest

from globenews.models.news_items import CanonicalEvent, Category, GeocodeResult, event_id_for_url
from globenews.services import event_repository
from globenews.services.db_service import normalize_database_url
from globenews.services.event_repository import (
    InMemoryEventStore,
    InMemoryGeocodeStore,
    PostgresEventStore,
    PostgresGeocodeStore,
)
from tests.fixtures import T0


def _event(url="https://news.example.com/quake", *, intensity=40, title="Earthquake hits Tokyo"):
    return CanonicalEvent(
        id=event_id_for_url(url),
        title=title,
        summary="",
        lat=35.6762,
        lng=139.6503,
        timestamp=T0,
        source_label="GDELT, NewsAPI",
        category=Category.DISASTER,
        intensity=intensity,
        url=url,
        source_count=2,
    )


class _FakeSavepoint:
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class _FakeConn:
    def transaction(self):
        return _FakeSavepoint()


def test_event_id_is_stable_for_equivalent_urls():
    assert event_id_for_url("https://News.example.com/quake/") == event_id_for_url("https://news.example.com/quake")
    assert event_id_for_url("https://news.example.com/a") != event_id_for_url("https://news.example.com/b")


def test_event_id_keeps_path_and_query_case():
    assert event_id_for_url("HTTPS://NEWS.example.com/story?id=AbC") == event_id_for_url("https://news.example.com/story?id=AbC")
    assert event_id_for_url("https://news.example.com/story?id=AbC") != event_id_for_url("https://news.example.com/story?id=abc")
    assert event_id_for_url("https://news.example.com/Story") != event_id_for_url("https://news.example.com/story")


@pytest.mark.asyncio
async def test_in_memory_upsert_merges_on_conflict():
    store = InMemoryEventStore()

    await store.upsert_events([_event(intensity=40)])
    result = await store.upsert_events([_event(intensity=25, title="Updated headline")])

    assert result.upserted == 1
    assert len(store.events) == 1
    stored = next(iter(store.events.values()))
    assert stored.intensity == 40
    assert stored.source_count == 3
    assert stored.title == "Updated headline"


@pytest.mark.asyncio
async def test_postgres_upsert_isolates_failing_rows(monkeypatch):
    executed = []
    bad = _event("https://news.example.com/bad")

    @asynccontextmanager
    async def fake_transaction():
        yield _FakeConn()

    async def fake_execute_with_conn(conn, query, *args, timeout=None):
        if args[0] == bad.id:
            raise ValueError("value out of range")
        executed.append(args)
        return "INSERT 0 1"

    monkeypatch.setattr(event_repository, "run_in_transaction", fake_transaction)
    monkeypatch.setattr(event_repository, "execute_with_conn", fake_execute_with_conn)

    good = _event()
    result = await PostgresEventStore().upsert_events([good, bad])

    assert result.upserted == 1
    assert result.failed == 1
    assert result.failed_ids == [bad.id]
    args = executed[0]
    assert args[0] == good.id
    assert args[6] == "GDELT, NewsAPI"
    assert args[7] == "disaster"
    assert args[5] == T0


@pytest.mark.asyncio
async def test_postgres_upsert_of_nothing_skips_the_database(monkeypatch):
    @asynccontextmanager
    async def forbidden():
        raise AssertionError("no transaction expected")
        yield

    monkeypatch.setattr(event_repository, "run_in_transaction", forbidden)

    result = await PostgresEventStore().upsert_events([])

    assert result.upserted == 0


@pytest.mark.asyncio
async def test_postgres_geocode_store_reads_rows(monkeypatch):
    async def fake_fetchrow(query, *args, timeout=None):
        if args[0] == "paris":
            return {"lat": 48.8566, "lng": 2.3522, "display_name": None, "confidence": None}
        return None

    monkeypatch.setattr(event_repository, "fetchrow", fake_fetchrow)
    store = PostgresGeocodeStore()

    result = await store.get("paris")

    assert result == GeocodeResult(lat=48.8566, lng=2.3522, display_name="paris", confidence=0.5)
    assert await store.get("atlantis") is None


@pytest.mark.asyncio
async def test_postgres_geocode_store_saves_rows(monkeypatch):
    calls = []

    async def fake_execute(query, *args, timeout=None):
        calls.append(args)
        return "INSERT 0 1"

    monkeypatch.setattr(event_repository, "execute", fake_execute)

    await PostgresGeocodeStore().save(
        "paris", GeocodeResult(lat=48.8566, lng=2.3522, display_name="Paris, France", confidence=0.9)
    )

    assert calls == [("paris", 48.8566, 2.3522, "Paris, France", 0.9)]


@pytest.mark.asyncio
async def test_in_memory_geocode_store_round_trip():
    store = InMemoryGeocodeStore()
    result = GeocodeResult(lat=1.0, lng=2.0, display_name="Somewhere")

    await store.save("somewhere", result)

    assert await store.get("somewhere") == result
    assert await store.get("elsewhere") is None


def test_normalize_database_url():
    assert normalize_database_url(" postgresql+asyncpg://u:p@db:5432/news ") == "postgresql://u:p@db:5432/news"
    assert normalize_database_url("postgresql://db/news") == "postgresql://db/news"
