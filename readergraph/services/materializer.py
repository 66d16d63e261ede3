"""Relation -> graph element materialization.

Turns the accumulated relations and characters of a chapter into positioned
nodes and labelled edges. The output is a pure function of the inputs:

  1. Node ids are every relation endpoint that resolves to a character name.
  2. Each node gets a seed position on a ring around (500, 350), derived from
     hashes of its id, so a character never moves between events.
  3. Edges skip self-loops, the sentinel id "0" and endpoints without a node.
  4. Edge labels prefer the relation tag that is new compared to the previous
     event, so the rendered graph shows what just changed.

Elements come back sorted nodes-then-edges by id, the same order the diff
engine emits, which keeps repeated diffs byte-identical.
"""

from __future__ import annotations

import hashlib
import math
from collections import OrderedDict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from readergraph.core.logging import get_logger
from readergraph.schemas.graph import (
    SENTINEL_ID,
    Character,
    GraphEdge,
    GraphNode,
    Position,
    Relation,
    sort_elements,
)

logger = get_logger(__name__)

CENTER_X = 500.0
CENTER_Y = 350.0
RADIUS = 320.0
MIN_RADIUS_FRACTION = 0.7
DEFAULT_NODE_WEIGHT = 3.0


@dataclass(frozen=True)
class CharacterProfile:
    """Display attributes of one character id."""

    name: str
    description: str = ""
    main_character: bool = False
    aliases: tuple[str, ...] = field(default_factory=tuple)


def build_character_lookup(characters: Iterable[Character]) -> dict[str, CharacterProfile]:
    """Map character id -> profile; later records for an id replace earlier ones."""
    lookup: dict[str, CharacterProfile] = {}
    for character in characters:
        lookup[character.id] = CharacterProfile(
            name=character.display_name,
            description=character.description,
            main_character=character.main_character,
            aliases=tuple(character.names),
        )
    return lookup


def build_node_weights(characters: Iterable[Character]) -> dict[str, float]:
    """Weight table from characters that carry an explicit weight."""
    return {c.id: c.weight for c in characters if c.weight is not None}


class SeededValueCache:
    """LRU memo of ``seeded_value`` results keyed by (id, min, max, salt)."""

    def __init__(self, max_size: int = 500) -> None:
        self.max_size = max_size
        self._cache: OrderedDict[tuple[str, int, int, str], int] = OrderedDict()

    def get(self, key: tuple[str, int, int, str]) -> int | None:
        value = self._cache.get(key)
        if value is not None:
            self._cache.move_to_end(key)
        return value

    def put(self, key: tuple[str, int, int, str], value: int) -> None:
        self._cache[key] = value
        self._cache.move_to_end(key)
        while len(self._cache) > self.max_size:
            self._cache.popitem(last=False)

    def __len__(self) -> int:
        return len(self._cache)

    def clear(self) -> None:
        self._cache.clear()


def seeded_value(
    node_id: str,
    minimum: int,
    maximum: int,
    salt: str = "",
    cache: SeededValueCache | None = None,
) -> int:
    """Stable pseudo-random integer in ``[minimum, maximum)`` for an id.

    SHA-256 keeps the value identical across processes and interpreter runs.
    Different salts give independent values for the same id. ``cache`` only
    memoizes; results are the same with or without it.
    """
    key = (node_id, minimum, maximum, salt)
    if cache is not None:
        cached = cache.get(key)
        if cached is not None:
            return cached
    digest = hashlib.sha256(f"{salt}:{node_id}".encode()).digest()
    span = max(maximum - minimum, 1)
    value = minimum + int.from_bytes(digest[:8], "big") % span
    if cache is not None:
        cache.put(key, value)
    return value


def node_position(node_id: str, cache: SeededValueCache | None = None) -> Position:
    """Seed coordinates on a ring at 70-100% of ``RADIUS``."""
    angle = math.radians(seeded_value(node_id, 0, 360, salt="angle", cache=cache))
    fraction = MIN_RADIUS_FRACTION + (1 - MIN_RADIUS_FRACTION) * (
        seeded_value(node_id, 0, 1000, salt="radius", cache=cache) / 1000
    )
    r = RADIUS * fraction
    return Position(x=CENTER_X + r * math.cos(angle), y=CENTER_Y + r * math.sin(angle))


def _latest_relation(relations: Sequence[Relation], a: str, b: str) -> Relation | None:
    for relation in reversed(relations):
        if relation.connects(a, b):
            return relation
    return None


def select_edge_label(relation: Relation, previous_relations: Sequence[Relation]) -> str:
    """Label an edge with its newest tag relative to the previous event."""
    tags = relation.relation
    if not tags:
        return ""
    previous = _latest_relation(previous_relations, relation.id1, relation.id2)
    if previous is None:
        return tags[0]
    known = set(previous.relation)
    return next((tag for tag in tags if tag not in known), tags[0])


def convert_relations_to_elements(
    relations: Sequence[Relation],
    lookup: Mapping[str, CharacterProfile],
    node_weights: Mapping[str, float] | None = None,
    previous_relations: Sequence[Relation] | None = None,
    default_weight: float = DEFAULT_NODE_WEIGHT,
    seed_cache: SeededValueCache | None = None,
    warned_ids: set[str] | None = None,
) -> list[GraphNode | GraphEdge]:
    """Materialize nodes and edges from accumulated relations.

    Args:
        relations: Every relation seen so far in the chapter, in arrival order.
        lookup: Character id -> profile; ids missing here are not characters.
        node_weights: Optional id -> weight table.
        previous_relations: Accumulated relations as of the previous event.
        default_weight: Weight for ids missing from ``node_weights``.
        seed_cache: Memo for node positions, owned by the caller.
        warned_ids: Ids already reported as defaulted; each id is reported
            once per set and added to it.

    Returns:
        Nodes then edges, each sorted by id.
    """
    previous_relations = previous_relations or []

    node_ids: list[str] = []
    seen: set[str] = set()
    for relation in relations:
        for endpoint in (relation.id1, relation.id2):
            if endpoint in seen:
                continue
            seen.add(endpoint)
            if endpoint in lookup and endpoint != SENTINEL_ID:
                node_ids.append(endpoint)
    retained = set(node_ids)

    nodes: list[GraphNode] = []
    for node_id in node_ids:
        profile = lookup[node_id]
        weight = node_weights.get(node_id) if node_weights is not None else None
        if weight is None or weight <= 0:
            if node_weights is not None and (warned_ids is None or node_id not in warned_ids):
                logger.warning("node_weight_defaulted", node_id=node_id, weight=weight)
                if warned_ids is not None:
                    warned_ids.add(node_id)
            weight = default_weight
        nodes.append(
            GraphNode(
                id=node_id,
                label=profile.name,
                common_name=profile.name,
                description=profile.description,
                main_character=profile.main_character,
                names=[profile.name, *profile.aliases],
                weight=weight,
                position=node_position(node_id, seed_cache),
            )
        )

    # Later occurrences of a pair supersede earlier ones
    edges: dict[str, GraphEdge] = {}
    for relation in relations:
        source, target = relation.id1, relation.id2
        if source == target or SENTINEL_ID in (source, target):
            continue
        if source not in retained or target not in retained:
            continue
        edge_id = f"{source}-{target}"
        edges[edge_id] = GraphEdge(
            id=edge_id,
            source=source,
            target=target,
            relation=list(relation.relation),
            label=select_edge_label(relation, previous_relations),
            positivity=relation.positivity,
            weight=relation.weight,
            count=relation.count,
        )

    return sort_elements([*nodes, *edges.values()])
