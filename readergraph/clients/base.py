"""The two upstream calls the graph cache depends on."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from readergraph.schemas.events import RawEventData
    from readergraph.schemas.manifest import Manifest


@runtime_checkable
class GraphSource(Protocol):
    """Upstream provider of per-event graph data and book manifests.

    Implementations raise ``EventNotFoundError`` when the resource is not
    generated yet and ``FetchError`` for transient failures.
    """

    async def fetch_event(self, book_id: int, chapter_idx: int, event_idx: int) -> RawEventData: ...

    async def fetch_manifest(self, book_id: int) -> Manifest: ...
