"""Shared test fixtures for readergraph tests.

Provides an in-memory store, a controllable clock, a mocked graph source and
factories for the canonical schemas.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from readergraph.config import Settings
from readergraph.core.exceptions import EventNotFoundError, StorageError
from readergraph.schemas.events import EventMeta, EventRecord, RawEventData
from readergraph.schemas.graph import Character, Relation
from readergraph.services.discovery import EventDiscovery
from readergraph.services.graph_service import GraphService
from readergraph.services.manifest_store import ManifestStore
from readergraph.storage.context import CacheContext
from readergraph.storage.kv import MemoryKeyValueStore
from readergraph.storage.persistent_kv import PersistentKV


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# -- Infrastructure -------------------------------------------------------


@pytest.fixture
def settings():
    return Settings(
        redis_url="memory://",
        discovery_delay_seconds=0,
        http_retry_initial_wait=0,
        http_retry_jitter=0,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryKeyValueStore()


@pytest.fixture
def kv(store, clock, settings):
    return PersistentKV(store, CacheContext(clock=clock), settings)


@pytest.fixture
def break_store(store, monkeypatch):
    """Make the named store operations raise ``StorageError``, as a Redis outage does."""

    def _break(*operations: str) -> None:
        for name in operations:

            async def failing(*args, _name=name, **kwargs):
                raise StorageError(f"{_name} failed: connection refused")

            monkeypatch.setattr(store, name, failing)

    return _break


@pytest.fixture
def mock_redis():
    """Mock Redis async client."""
    redis = AsyncMock()
    redis.get.return_value = None
    redis.set.return_value = True
    return redis


@pytest.fixture
def manifests(kv):
    return ManifestStore(kv)


@pytest.fixture
def graph_source():
    """GraphSource whose events and manifest are absent until configured."""
    source = MagicMock()
    source.fetch_event = AsyncMock(side_effect=EventNotFoundError())
    source.fetch_manifest = AsyncMock(side_effect=EventNotFoundError())
    return source


@pytest.fixture
def serve_events(graph_source):
    """Configure ``fetch_event`` from a ``{(chapter, event): data | exception}`` map."""

    def _serve(events: dict[tuple[int, int], RawEventData | Exception]) -> None:
        async def fetch_event(book_id: int, chapter_idx: int, event_idx: int) -> RawEventData:
            outcome = events.get((chapter_idx, event_idx))
            if outcome is None:
                raise EventNotFoundError()
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        graph_source.fetch_event.side_effect = fetch_event

    return _serve


@pytest.fixture
def discovery(kv, manifests, graph_source, settings):
    return EventDiscovery(kv, manifests, graph_source, settings=settings, sleep=AsyncMock())


@pytest.fixture
def service(kv, manifests, discovery, settings):
    return GraphService(kv, manifests, discovery, settings)


# -- Factory fixtures -----------------------------------------------------


@pytest.fixture
def make_character():
    """Factory for Character with a display name."""

    def _factory(char_id: str, name: str | None = None, **kwargs) -> Character:
        return Character(id=char_id, common_name=name or f"Character {char_id}", **kwargs)

    return _factory


@pytest.fixture
def make_relation():
    """Factory for Relation; extra positional args are relation tags."""

    def _factory(id1: str, id2: str, *tags: str, positivity: float | None = None) -> Relation:
        return Relation(id1=id1, id2=id2, relation=list(tags), positivity=positivity)

    return _factory


@pytest.fixture
def make_event_data():
    """Factory for RawEventData with optional bounds."""

    def _factory(
        characters: list[Character] | None = None,
        relations: list[Relation] | None = None,
        start: int | None = None,
        end: int | None = None,
        name: str | None = None,
    ) -> RawEventData:
        event = None
        if name is not None or start is not None or end is not None:
            event = EventMeta(name=name, start=start, end=end)
        return RawEventData(characters=characters or [], relations=relations or [], event=event)

    return _factory


@pytest.fixture
def make_record():
    """Factory for EventRecord in chapter 1."""

    def _factory(
        event_idx: int,
        characters: list[Character] | None = None,
        relations: list[Relation] | None = None,
        chapter_idx: int = 1,
    ) -> EventRecord:
        return EventRecord(
            event_idx=event_idx,
            chapter_idx=chapter_idx,
            characters=characters or [],
            relations=relations or [],
            event=EventMeta(idx=event_idx, name=f"event {event_idx}"),
        )

    return _factory


# -- Sample data ----------------------------------------------------------


@pytest.fixture
def sample_manifest():
    """Raw manifest as the reader backend sends it."""
    return {
        "chapters": [
            {
                "chapterIdx": 1,
                "title": "첫 만남",
                "events": [
                    {"eventIdx": 1, "startPos": 0, "endPos": 100},
                    {"eventIdx": 2, "startPos": 100, "endPos": 200},
                    {"eventIdx": 3, "startPos": 200, "endPos": 300},
                ],
            },
            {
                "chapterIdx": 2,
                "title": "갈등",
                "events": [{"eventIdx": 1, "startPos": 300, "endPos": 450}],
            },
        ],
        "progressMetadata": {"maxChapter": 2, "totalLength": 450},
    }
