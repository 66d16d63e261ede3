"""Pydantic schemas for the per-chapter snapshot + diff cache.

A ``ChapterCachePayload`` is the unit of persistence: the materialized graph
at the chapter's first event plus one ``DiffRecord`` per later event.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field

from readergraph.schemas.events import EventMeta
from readergraph.schemas.graph import Character, GraphElement


class PayloadSource(StrEnum):
    """How the events of a cached chapter were discovered."""

    MANIFEST = "manifest"
    SCAN = "scan"
    EMPTY = "empty"
    DIRECT = "direct"  # built from caller-supplied events


class ElementDiff(BaseModel):
    added: list[GraphElement] = Field(default_factory=list)
    updated: list[GraphElement] = Field(default_factory=list)
    removed_ids: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.updated or self.removed_ids)


class CharacterDiff(BaseModel):
    added: list[Character] = Field(default_factory=list)
    updated: list[Character] = Field(default_factory=list)
    removed_ids: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.updated or self.removed_ids)


class DiffRecord(BaseModel):
    event_idx: int
    event_meta: EventMeta | None = None
    element_diff: ElementDiff = Field(default_factory=ElementDiff)
    character_diff: CharacterDiff = Field(default_factory=CharacterDiff)


class BaseSnapshot(BaseModel):
    event_idx: int
    elements: list[GraphElement] = Field(default_factory=list)
    characters: list[Character] = Field(default_factory=list)
    event_meta: EventMeta | None = None


class EventSummary(BaseModel):
    """Lightweight per-event facts kept for every event, diff or not."""

    event_idx: int
    start_pos: int | None = None
    end_pos: int | None = None
    event_id: int | str | None = None
    has_characters: bool = False
    has_relations: bool = False
    is_stub: bool = False


class ChapterCachePayload(BaseModel):
    book_id: int
    chapter_idx: int
    max_event_idx: int = 0
    base_snapshot: BaseSnapshot | None = None
    diffs: list[DiffRecord] = Field(default_factory=list)
    event_summaries: list[EventSummary] = Field(default_factory=list)
    timestamp: float
    source: PayloadSource = PayloadSource.DIRECT

    @property
    def is_empty(self) -> bool:
        return self.base_snapshot is None


class GraphState(BaseModel):
    """Cumulative graph at one event, as handed to the UI."""

    book_id: int | None = None
    chapter_idx: int | None = None
    event_idx: int
    elements: list[GraphElement] = Field(default_factory=list)
    characters: list[Character] = Field(default_factory=list)
    event_meta: EventMeta | None = None
    new_node_ids: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.elements


class ChapterSummaryEntry(BaseModel):
    chapter_idx: int
    max_event_idx: int = 0
    event_count: int = 0
    timestamp: float | None = None


class BookCacheSummary(BaseModel):
    """Per-book roll-up of chapter caches (``graph_cache_{bookId}``)."""

    book_id: int
    chapters: list[ChapterSummaryEntry] = Field(default_factory=list)
    updated_at: float

    @property
    def max_event_count(self) -> int:
        return max((c.max_event_idx for c in self.chapters), default=0)

    def max_event_idx(self, chapter_idx: int) -> int:
        entry = next((c for c in self.chapters if c.chapter_idx == chapter_idx), None)
        return entry.max_event_idx if entry else 0
