"""Fold a chapter's events into a base snapshot + diff chain.

The graph is always re-materialized from the chapter's first event, never
patched incrementally, so node positions stay fixed and edge labels reflect
the full history. Only the resulting deltas are stored.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence

from readergraph.config import Settings
from readergraph.config import settings as default_settings
from readergraph.core.logging import get_logger
from readergraph.schemas.cache import (
    BaseSnapshot,
    ChapterCachePayload,
    DiffRecord,
    EventSummary,
    PayloadSource,
)
from readergraph.schemas.events import EventRecord
from readergraph.schemas.graph import Character, GraphEdge, GraphNode, Relation, sort_characters
from readergraph.services.diff_engine import compute_character_diff, compute_element_diff
from readergraph.services.materializer import (
    DEFAULT_NODE_WEIGHT,
    SeededValueCache,
    build_character_lookup,
    build_node_weights,
    convert_relations_to_elements,
)

logger = get_logger(__name__)


def order_events(events: Sequence[EventRecord]) -> list[EventRecord]:
    """Sort by event index; a repeated index keeps its last record."""
    by_idx: dict[int, EventRecord] = {}
    for record in events:
        if record.event_idx in by_idx:
            logger.warning("duplicate_event_record", event_idx=record.event_idx)
        by_idx[record.event_idx] = record
    return [by_idx[idx] for idx in sorted(by_idx)]


def materialize(
    relations: Sequence[Relation],
    characters: Sequence[Character],
    previous_relations: Sequence[Relation] | None = None,
    default_weight: float = DEFAULT_NODE_WEIGHT,
    seed_cache: SeededValueCache | None = None,
    warned_ids: set[str] | None = None,
) -> list[GraphNode | GraphEdge]:
    """Materialize accumulated chapter state into graph elements."""
    weights = build_node_weights(characters)
    return convert_relations_to_elements(
        relations,
        build_character_lookup(characters),
        node_weights=weights or None,
        previous_relations=previous_relations,
        default_weight=default_weight,
        seed_cache=seed_cache,
        warned_ids=warned_ids,
    )


def materialize_prefix(
    events: Sequence[EventRecord],
    target_event_idx: int,
    default_weight: float = DEFAULT_NODE_WEIGHT,
) -> tuple[list[GraphNode | GraphEdge], list[Character]]:
    """Materialize the chapter from scratch as of ``target_event_idx``.

    Independent of the cache; used to check replayed states.
    """
    prefix = [e for e in order_events(events) if e.event_idx <= target_event_idx]
    relations: list[Relation] = []
    previous: list[Relation] = []
    characters: dict[str, Character] = {}
    for record in prefix:
        previous = list(relations)
        relations.extend(record.relations)
        for character in record.characters:
            characters[character.id] = character
    character_list = sort_characters(list(characters.values()))
    return materialize(relations, character_list, previous, default_weight), character_list


def summarize(record: EventRecord) -> EventSummary:
    return EventSummary(
        event_idx=record.event_idx,
        start_pos=record.start_pos,
        end_pos=record.end_pos,
        event_id=record.event_id,
        has_characters=bool(record.characters),
        has_relations=bool(record.relations),
        is_stub=record.is_stub,
    )


class CacheBuilder:
    """Builds ``ChapterCachePayload`` objects from discovered events.

    Owns the position memo, sized by ``position_cache_size``, so builders with
    different settings never share layout state.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self.clock = clock or time.time
        self.seed_cache = SeededValueCache(self.settings.position_cache_size)

    def build(
        self,
        book_id: int,
        chapter_idx: int,
        events: Sequence[EventRecord],
        source: PayloadSource = PayloadSource.DIRECT,
    ) -> ChapterCachePayload:
        ordered = order_events(events)
        if not ordered:
            logger.info("chapter_cache_empty", book_id=book_id, chapter=chapter_idx)
            return ChapterCachePayload(
                book_id=book_id,
                chapter_idx=chapter_idx,
                timestamp=self.clock(),
                source=source,
            )

        relations: list[Relation] = []  # append-only, duplicates kept
        characters: dict[str, Character] = {}
        base: BaseSnapshot | None = None
        diffs: list[DiffRecord] = []
        prev_elements: list[GraphNode | GraphEdge] = []
        prev_characters: list[Character] = []
        warned_ids: set[str] = set()

        for record in ordered:
            previous_relations = list(relations)
            relations.extend(record.relations)
            for character in record.characters:
                characters[character.id] = character

            character_list = sort_characters(list(characters.values()))
            elements = materialize(
                relations,
                character_list,
                previous_relations,
                self.settings.default_node_weight,
                seed_cache=self.seed_cache,
                warned_ids=warned_ids,
            )

            if base is None:
                base = BaseSnapshot(
                    event_idx=record.event_idx,
                    elements=elements,
                    characters=character_list,
                    event_meta=record.event,
                )
            else:
                diffs.append(
                    DiffRecord(
                        event_idx=record.event_idx,
                        event_meta=record.event,
                        element_diff=compute_element_diff(prev_elements, elements),
                        character_diff=compute_character_diff(prev_characters, character_list),
                    )
                )
            prev_elements, prev_characters = elements, character_list

        payload = ChapterCachePayload(
            book_id=book_id,
            chapter_idx=chapter_idx,
            max_event_idx=ordered[-1].event_idx,
            base_snapshot=base,
            diffs=diffs,
            event_summaries=[summarize(record) for record in ordered],
            timestamp=self.clock(),
            source=source,
        )
        logger.info(
            "chapter_cache_built",
            book_id=book_id,
            chapter=chapter_idx,
            events=len(ordered),
            max_event_idx=payload.max_event_idx,
            base_elements=len(base.elements) if base else 0,
            source=str(source),
        )
        return payload
