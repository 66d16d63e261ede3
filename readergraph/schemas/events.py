"""Pydantic schemas for per-event graph data."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from readergraph.schemas.graph import Character, Relation, _number_or_none
from readergraph.schemas.manifest import EventStub


def to_int_or_none(value: Any) -> int | None:
    number = _number_or_none(value)
    return int(number) if number is not None else None


class EventMeta(BaseModel):
    """Narrative event metadata as returned by the event API.

    Unknown fields are preserved so the UI can show whatever the backend sends.
    """

    model_config = ConfigDict(extra="allow")

    event_id: int | str | None = None
    idx: int | None = None
    name: str | None = None
    start: int | None = None
    end: int | None = None

    @property
    def has_content(self) -> bool:
        """An id, a name or bounds count as a real event."""
        return (
            self.event_id is not None
            or bool(self.name)
            or self.start is not None
            or self.end is not None
        )

    @classmethod
    def from_api(cls, raw: Mapping[str, Any] | None) -> EventMeta | None:
        if not isinstance(raw, Mapping) or not raw:
            return None
        known = {"event_id", "eventId", "idx", "eventIdx", "name", "title", "start", "startPos", "end", "endPos"}
        extra = {k: v for k, v in raw.items() if k not in known}
        event_id = raw.get("event_id", raw.get("eventId"))
        return cls.model_validate(
            {
                **extra,
                "event_id": event_id,
                "idx": to_int_or_none(raw.get("idx", raw.get("eventIdx"))),
                "name": raw.get("name") or raw.get("title") or None,
                "start": to_int_or_none(raw.get("start", raw.get("startPos"))),
                "end": to_int_or_none(raw.get("end", raw.get("endPos"))),
            }
        )


class RawEventData(BaseModel):
    """Graph content of a single event, normalized at the network boundary."""

    characters: list[Character] = Field(default_factory=list)
    relations: list[Relation] = Field(default_factory=list)
    event: EventMeta | None = None

    @property
    def has_data(self) -> bool:
        return bool(self.characters) or bool(self.relations) or (
            self.event is not None and self.event.has_content
        )

    @classmethod
    def from_api(cls, result: Mapping[str, Any] | None) -> RawEventData:
        """Normalize an event API ``result`` object; missing parts become empty."""
        if not isinstance(result, Mapping):
            return cls()
        raw_characters = result.get("characters") or []
        raw_relations = result.get("relations") or []
        characters = [c for c in (Character.from_api(r) for r in raw_characters) if c]
        relations = [r for r in (Relation.from_api(r) for r in raw_relations) if r]
        return cls(
            characters=characters,
            relations=relations,
            event=EventMeta.from_api(result.get("event")),
        )


class EventRecord(BaseModel):
    """One discovered event of a chapter, ready to be folded into a cache."""

    event_idx: int
    chapter_idx: int
    characters: list[Character] = Field(default_factory=list)
    relations: list[Relation] = Field(default_factory=list)
    event: EventMeta | None = None
    start_pos: int | None = None
    end_pos: int | None = None
    event_id: int | str | None = None
    is_stub: bool = False

    @classmethod
    def from_raw(
        cls,
        chapter_idx: int,
        event_idx: int,
        data: RawEventData,
        stub: EventStub | None = None,
    ) -> EventRecord:
        """Combine fetched content with manifest bounds (fetched bounds win)."""
        meta = data.event
        start = meta.start if meta and meta.start is not None else None
        end = meta.end if meta and meta.end is not None else None
        if stub is not None:
            start = stub.start_pos if start is None else start
            end = stub.end_pos if end is None else end
        event_id = meta.event_id if meta else None
        if event_id is None and stub is not None:
            event_id = stub.event_id
        return cls(
            event_idx=event_idx,
            chapter_idx=chapter_idx,
            characters=data.characters,
            relations=data.relations,
            event=meta,
            start_pos=start,
            end_pos=end,
            event_id=event_id,
        )

    @classmethod
    def from_stub(cls, chapter_idx: int, stub: EventStub) -> EventRecord:
        """Content-less record carrying only the manifest bounds."""
        return cls(
            event_idx=stub.idx,
            chapter_idx=chapter_idx,
            event=EventMeta(
                event_id=stub.event_id, idx=stub.idx, start=stub.start_pos, end=stub.end_pos
            ),
            start_pos=stub.start_pos,
            end_pos=stub.end_pos,
            event_id=stub.event_id,
            is_stub=True,
        )
