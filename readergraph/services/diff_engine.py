"""Structural diffs between two materialized graph states.

Both diff functions return ``added`` / ``updated`` / ``removed_ids`` in a fixed
order (nodes before edges, then by id; characters by id) so the same pair of
inputs always serializes to the same bytes.
"""

from __future__ import annotations

from collections.abc import Sequence

from readergraph.schemas.cache import CharacterDiff, ElementDiff
from readergraph.schemas.graph import Character, GraphEdge, GraphNode, element_sort_key

Element = GraphNode | GraphEdge


def compute_element_diff(prev: Sequence[Element], curr: Sequence[Element]) -> ElementDiff:
    """Diff two element lists by id; payload and position changes count as updates."""
    prev_map = {element.id: element for element in prev}
    curr_map = {element.id: element for element in curr}

    added = [e for eid, e in curr_map.items() if eid not in prev_map]
    updated = [e for eid, e in curr_map.items() if eid in prev_map and prev_map[eid] != e]
    removed = [e for eid, e in prev_map.items() if eid not in curr_map]

    return ElementDiff(
        added=sorted(added, key=element_sort_key),
        updated=sorted(updated, key=element_sort_key),
        removed_ids=[e.id for e in sorted(removed, key=element_sort_key)],
    )


def compute_character_diff(
    prev: Sequence[Character], curr: Sequence[Character]
) -> CharacterDiff:
    """Same contract as ``compute_element_diff``, keyed on the canonical character id."""
    prev_map = {c.id: c for c in prev}
    curr_map = {c.id: c for c in curr}

    added = [c for cid, c in curr_map.items() if cid not in prev_map]
    updated = [c for cid, c in curr_map.items() if cid in prev_map and prev_map[cid] != c]

    return CharacterDiff(
        added=sorted(added, key=lambda c: c.id),
        updated=sorted(updated, key=lambda c: c.id),
        removed_ids=sorted(cid for cid in prev_map if cid not in curr_map),
    )
