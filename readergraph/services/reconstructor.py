"""Replay a chapter cache up to a target event.

Every call starts from the base snapshot and applies the diffs in order; no
intermediate checkpoints are stored, so cost grows with the number of diffs
up to the target.
"""

from __future__ import annotations

from readergraph.core.exceptions import InvariantViolationError
from readergraph.core.result import Result
from readergraph.schemas.cache import ChapterCachePayload, GraphState
from readergraph.schemas.graph import Character, GraphEdge, GraphNode, sort_characters, sort_elements


def try_reconstruct(payload: ChapterCachePayload, target_event_idx: int) -> Result[GraphState]:
    """Graph state at ``target_event_idx``, or an ``invariant`` error without a base."""
    base = payload.base_snapshot
    if base is None:
        return Result.fail(
            InvariantViolationError(
                "Chapter cache has no base snapshot",
                context={"book_id": payload.book_id, "chapter": payload.chapter_idx},
            )
        )

    if target_event_idx <= base.event_idx:
        return Result.ok(
            GraphState(
                book_id=payload.book_id,
                chapter_idx=payload.chapter_idx,
                event_idx=base.event_idx,
                elements=[e.model_copy(deep=True) for e in base.elements],
                characters=[c.model_copy(deep=True) for c in base.characters],
                event_meta=base.event_meta,
            )
        )

    elements: dict[str, GraphNode | GraphEdge] = {e.id: e for e in base.elements}
    characters: dict[str, Character] = {c.id: c for c in base.characters}
    event_idx = base.event_idx
    event_meta = base.event_meta

    for diff in sorted(payload.diffs, key=lambda d: d.event_idx):
        if diff.event_idx > target_event_idx:
            break
        # removal first so an id both removed and re-added ends up present
        for element_id in diff.element_diff.removed_ids:
            elements.pop(element_id, None)
        for element in diff.element_diff.updated:
            elements[element.id] = element
        for element in diff.element_diff.added:
            elements[element.id] = element

        for character_id in diff.character_diff.removed_ids:
            characters.pop(character_id, None)
        for character in diff.character_diff.updated:
            characters[character.id] = character
        for character in diff.character_diff.added:
            characters[character.id] = character

        event_idx = diff.event_idx
        event_meta = diff.event_meta

    return Result.ok(
        GraphState(
            book_id=payload.book_id,
            chapter_idx=payload.chapter_idx,
            event_idx=event_idx,
            elements=[e.model_copy(deep=True) for e in sort_elements(list(elements.values()))],
            characters=[c.model_copy(deep=True) for c in sort_characters(list(characters.values()))],
            event_meta=event_meta,
        )
    )


def reconstruct(payload: ChapterCachePayload, target_event_idx: int) -> GraphState | None:
    """``try_reconstruct`` without the error detail."""
    return try_reconstruct(payload, target_event_idx).value
