"""Pydantic schemas for characters, relations and graph elements.

Canonical types produced at the network boundary. Everything downstream of
``Character.from_api`` / ``Relation.from_api`` works with string ids only.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator

from readergraph.core.logging import get_logger

logger = get_logger(__name__)

SENTINEL_ID = "0"

CHARACTER_ID_FIELDS = ("id", "characterId", "character_id", "char_id", "pk", "node_id")


def normalize_id(value: Any) -> str | None:
    """Normalize a raw id to its canonical string form.

    Numbers (and numeric strings) are truncated to an integer string, so
    ``3``, ``3.0`` and ``"3"`` all become ``"3"``. Other non-empty strings are
    kept as-is after stripping.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(math.trunc(value)) if math.isfinite(value) else None
    text = str(value).strip()
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return text
    if not math.isfinite(number):
        return None
    return str(math.trunc(number))


def _number_or_none(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return value if math.isfinite(value) else None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class Character(BaseModel):
    """A character record with a canonical string id."""

    id: str
    common_name: str | None = None
    name: str | None = None
    names: list[str] = Field(default_factory=list)
    description: str = ""
    main_character: bool = False
    weight: float | None = None
    count: int | None = None
    profile_image: str | None = None

    @property
    def display_name(self) -> str:
        if self.common_name:
            return self.common_name
        if self.name:
            return self.name
        if self.names:
            return self.names[0]
        return self.id

    @classmethod
    def from_api(cls, raw: Mapping[str, Any]) -> Character | None:
        """Build a canonical character from an API record, or None without an id."""
        if not isinstance(raw, Mapping):
            return None
        char_id = None
        for key in CHARACTER_ID_FIELDS:
            if raw.get(key) is not None:
                char_id = normalize_id(raw[key])
                break
        if char_id is None:
            logger.warning("character_without_id", keys=sorted(raw.keys()))
            return None

        names = raw.get("names")
        weight = _number_or_none(raw.get("weight"))
        count = _number_or_none(raw.get("count"))
        return cls(
            id=char_id,
            common_name=raw.get("common_name") or None,
            name=raw.get("name") or None,
            names=[str(n) for n in names if n] if isinstance(names, list) else [],
            description=raw.get("description") or raw.get("profile_text") or "",
            main_character=bool(raw.get("main_character") or raw.get("isMainCharacter")),
            weight=weight,
            count=int(count) if count is not None else None,
            profile_image=raw.get("profileImage") or raw.get("profile_image") or None,
        )


class Relation(BaseModel):
    """A positivity-scored tie between two character ids."""

    id1: str
    id2: str
    relation: list[str] = Field(default_factory=list)
    positivity: float | None = None
    weight: float = 1
    count: int | None = None

    @field_validator("relation", mode="before")
    @classmethod
    def coerce_relation(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v] if v else []
        if isinstance(v, list | tuple):
            return [str(tag) for tag in v if tag is not None and tag != ""]
        logger.warning("relation_tags_invalid", value_type=type(v).__name__)
        return []

    def connects(self, a: str, b: str) -> bool:
        """True if this relation links a and b, in either orientation."""
        return (self.id1 == a and self.id2 == b) or (self.id1 == b and self.id2 == a)

    @classmethod
    def from_api(cls, raw: Mapping[str, Any]) -> Relation | None:
        """Build a relation from ``id1/id2`` or ``source/target``; None if unresolvable."""
        if not isinstance(raw, Mapping):
            return None
        raw_id1 = raw.get("id1") if raw.get("id1") is not None else raw.get("source")
        raw_id2 = raw.get("id2") if raw.get("id2") is not None else raw.get("target")
        id1 = normalize_id(raw_id1)
        id2 = normalize_id(raw_id2)
        if id1 is None or id2 is None:
            logger.warning("relation_endpoint_invalid", id1=raw_id1, id2=raw_id2)
            return None
        weight = _number_or_none(raw.get("weight"))
        count = _number_or_none(raw.get("count"))
        return cls(
            id1=id1,
            id2=id2,
            relation=raw.get("relation"),
            positivity=_number_or_none(raw.get("positivity")),
            weight=weight if weight is not None else 1,
            count=int(count) if count is not None else None,
        )


# --- Graph elements ---


class Position(BaseModel):
    x: float
    y: float


class GraphNode(BaseModel):
    """A character node with a deterministic seed position."""

    kind: Literal["node"] = "node"
    id: str
    label: str
    common_name: str
    description: str = ""
    main_character: bool = False
    names: list[str] = Field(default_factory=list)
    weight: float
    position: Position


class GraphEdge(BaseModel):
    """A relation edge; ``id`` is always ``"{source}-{target}"``."""

    kind: Literal["edge"] = "edge"
    id: str
    source: str
    target: str
    relation: list[str] = Field(default_factory=list)
    label: str = ""
    positivity: float | None = None
    weight: float = 1
    count: int | None = None


GraphElement = Annotated[GraphNode | GraphEdge, Field(discriminator="kind")]


def element_sort_key(element: GraphNode | GraphEdge) -> tuple[int, str]:
    """Nodes before edges, then lexicographic by id."""
    return (0 if element.kind == "node" else 1, element.id)


def sort_elements(elements: list[GraphNode | GraphEdge]) -> list[GraphNode | GraphEdge]:
    return sorted(elements, key=element_sort_key)


def sort_characters(characters: list[Character]) -> list[Character]:
    return sorted(characters, key=lambda c: c.id)
