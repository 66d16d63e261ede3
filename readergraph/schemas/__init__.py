"""Canonical data models shared by every component."""

from readergraph.schemas.cache import (
    BaseSnapshot,
    BookCacheSummary,
    ChapterCachePayload,
    ChapterSummaryEntry,
    CharacterDiff,
    DiffRecord,
    ElementDiff,
    EventSummary,
    GraphState,
    PayloadSource,
)
from readergraph.schemas.events import EventMeta, EventRecord, RawEventData
from readergraph.schemas.graph import (
    Character,
    GraphEdge,
    GraphElement,
    GraphNode,
    Position,
    Relation,
)
from readergraph.schemas.manifest import Chapter, EventStub, Manifest, ManifestEnvelope

__all__ = [
    "BaseSnapshot",
    "BookCacheSummary",
    "Chapter",
    "ChapterCachePayload",
    "ChapterSummaryEntry",
    "Character",
    "CharacterDiff",
    "DiffRecord",
    "ElementDiff",
    "EventMeta",
    "EventRecord",
    "EventStub",
    "EventSummary",
    "GraphEdge",
    "GraphElement",
    "GraphNode",
    "GraphState",
    "Manifest",
    "ManifestEnvelope",
    "PayloadSource",
    "Position",
    "RawEventData",
    "Relation",
]
