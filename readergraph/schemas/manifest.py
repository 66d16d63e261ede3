"""Pydantic schemas for the book manifest (chapters and declared events).

Normalization mirrors what the reader backend may send: several spellings of
the index and bound fields are accepted, and chapter bounds fall back to the
bounds of their first/last event.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field, model_validator

from readergraph.core.logging import get_logger
from readergraph.schemas.graph import _number_or_none

logger = get_logger(__name__)


def _first_number(raw: Mapping[str, Any], *keys: str) -> int | None:
    for key in keys:
        number = _number_or_none(raw.get(key))
        if number is not None:
            return int(number)
    return None


class EventStub(BaseModel):
    """An event declared by the manifest; graph content may not exist yet."""

    idx: int = Field(..., ge=1)
    start_pos: int = 0
    end_pos: int = 0
    event_id: int | str | None = None

    @classmethod
    def from_api(cls, raw: Mapping[str, Any], fallback_idx: int) -> EventStub | None:
        if not isinstance(raw, Mapping):
            return None
        idx = _first_number(raw, "idx", "eventIdx", "index", "id")
        if idx is None:
            idx = fallback_idx
        if idx <= 0:
            return None
        start = _first_number(raw, "startPos", "start", "begin")
        end = _first_number(raw, "endPos", "end", "finish")
        return cls(
            idx=idx,
            start_pos=start or 0,
            end_pos=end or 0,
            event_id=raw.get("eventId", raw.get("event_id")),
        )


class Chapter(BaseModel):
    idx: int = Field(..., ge=1)
    title: str | None = None
    start_pos: int | None = None
    end_pos: int | None = None
    events: list[EventStub] = Field(default_factory=list)

    @model_validator(mode="after")
    def fill_bounds(self) -> Chapter:
        self.events = sorted(self.events, key=lambda e: e.idx)
        if self.start_pos is None:
            self.start_pos = self.events[0].start_pos if self.events else 0
        if self.end_pos is None:
            self.end_pos = self.events[-1].end_pos if self.events else self.start_pos
        return self

    @property
    def event_indices(self) -> list[int]:
        return [event.idx for event in self.events]

    def event(self, event_idx: int) -> EventStub | None:
        return next((e for e in self.events if e.idx == event_idx), None)

    @classmethod
    def from_api(cls, raw: Mapping[str, Any], position: int) -> Chapter:
        idx = _first_number(raw, "chapterIdx", "idx", "chapter", "number")
        if idx is None or idx <= 0:
            idx = position + 1
        title = raw.get("title") or raw.get("chapterTitle") or raw.get("name") or raw.get("chapterName")
        raw_events = raw.get("events") if isinstance(raw.get("events"), list) else []
        events = [
            stub
            for i, event in enumerate(raw_events)
            if (stub := EventStub.from_api(event, i + 1)) is not None
        ]
        return cls(
            idx=idx,
            title=title,
            start_pos=_first_number(raw, "startPos", "start"),
            end_pos=_first_number(raw, "endPos", "end"),
            events=events,
        )


class ChapterLength(BaseModel):
    chapter_idx: int
    length: int = 0


class ProgressMetadata(BaseModel):
    max_chapter: int = 0
    total_length: int = 0
    chapter_lengths: list[ChapterLength] = Field(default_factory=list)

    @classmethod
    def from_api(cls, raw: Mapping[str, Any] | None) -> ProgressMetadata | None:
        if not isinstance(raw, Mapping):
            return None
        lengths = []
        for entry in raw.get("chapterLengths") or []:
            if not isinstance(entry, Mapping):
                continue
            chapter_idx = _first_number(entry, "chapterIdx", "idx", "chapter", "number")
            if chapter_idx is not None:
                lengths.append(
                    ChapterLength(chapter_idx=chapter_idx, length=_first_number(entry, "length") or 0)
                )
        return cls(
            max_chapter=_first_number(raw, "maxChapter") or 0,
            total_length=_first_number(raw, "totalLength") or 0,
            chapter_lengths=lengths,
        )


class Manifest(BaseModel):
    """Book structure: chapters with their declared events."""

    chapters: list[Chapter] = Field(default_factory=list)
    progress_metadata: ProgressMetadata | None = None

    @model_validator(mode="after")
    def unique_chapters(self) -> Manifest:
        seen: set[int] = set()
        chapters = []
        for chapter in self.chapters:
            if chapter.idx in seen:
                logger.warning("manifest_duplicate_chapter", chapter_idx=chapter.idx)
                continue
            seen.add(chapter.idx)
            chapters.append(chapter)
        self.chapters = sorted(chapters, key=lambda c: c.idx)
        return self

    def chapter(self, chapter_idx: int) -> Chapter | None:
        return next((c for c in self.chapters if c.idx == chapter_idx), None)

    @property
    def max_chapter(self) -> int:
        if self.progress_metadata and self.progress_metadata.max_chapter:
            return self.progress_metadata.max_chapter
        return max((c.idx for c in self.chapters), default=0)

    @classmethod
    def from_api(cls, raw: Mapping[str, Any]) -> Manifest:
        raw_chapters = raw.get("chapters") if isinstance(raw.get("chapters"), list) else []
        return cls(
            chapters=[
                Chapter.from_api(chapter, i)
                for i, chapter in enumerate(raw_chapters)
                if isinstance(chapter, Mapping)
            ],
            progress_metadata=ProgressMetadata.from_api(raw.get("progressMetadata")),
        )


class ManifestEnvelope(BaseModel):
    """Durable form of a cached manifest."""

    data: Manifest
    timestamp: float
