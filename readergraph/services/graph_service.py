"""Reader-facing facade over discovery, storage and replay.

The UI asks three things of the cache: the graph at an event, how many events
a chapter has, and which event a reading position falls into. Everything here
degrades to ``None`` instead of raising, because a missing graph must never
break page navigation.
"""

from __future__ import annotations

import asyncio
from enum import StrEnum
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from readergraph.config import Settings
from readergraph.config import settings as default_settings
from readergraph.core.exceptions import BuildAbortedError, ErrorKind, ReaderGraphError
from readergraph.core.logging import get_logger, graph_context
from readergraph.schemas.cache import ChapterCachePayload, GraphState
from readergraph.schemas.graph import GraphNode
from readergraph.services.discovery import EventDiscovery
from readergraph.services.manifest_store import ManifestStore
from readergraph.services.reconstructor import try_reconstruct
from readergraph.storage.kv import KeyValueStore, create_store
from readergraph.storage.persistent_kv import BOOK_NAMESPACE, PersistentKV

if TYPE_CHECKING:
    from readergraph.clients.base import GraphSource

logger = get_logger(__name__)


class BuildStatus(StrEnum):
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


class BookBuildResult(BaseModel):
    """Outcome of a whole-book cache build."""

    book_id: int
    status: BuildStatus
    chapters_built: list[int] = Field(default_factory=list)
    max_event_idx: dict[int, int] = Field(default_factory=dict)
    error_kind: ErrorKind | None = None
    detail: str | None = None


class EventLocation(BaseModel):
    """The event containing a reading position."""

    book_id: int
    chapter_idx: int
    event_idx: int
    start_pos: int
    end_pos: int
    progress: float


class GraphService:
    """Entry point for the reader UI."""

    def __init__(
        self,
        kv: PersistentKV,
        manifests: ManifestStore,
        discovery: EventDiscovery,
        settings: Settings | None = None,
    ) -> None:
        self.kv = kv
        self.manifests = manifests
        self.discovery = discovery
        self.settings = settings or default_settings

    @classmethod
    def create(
        cls,
        source: GraphSource,
        store: KeyValueStore | None = None,
        settings: Settings | None = None,
    ) -> GraphService:
        """Wire the default component graph around a ``GraphSource``."""
        settings = settings or default_settings
        kv = PersistentKV(store or create_store(settings), settings=settings)
        manifests = ManifestStore(kv)
        discovery = EventDiscovery(kv, manifests, source, settings=settings)
        return cls(kv, manifests, discovery, settings)

    async def get_chapter_cache(
        self, book_id: int, chapter_idx: int, force_refresh: bool = False
    ) -> ChapterCachePayload | None:
        """Chapter cache, discovered on a miss. ``None`` when discovery or storage fails."""
        try:
            return await self.discovery.discover(book_id, chapter_idx, force_refresh=force_refresh)
        except ReaderGraphError as e:
            logger.warning(
                "chapter_cache_unavailable",
                book_id=book_id,
                chapter=chapter_idx,
                kind=str(e.kind),
                error=e.detail,
            )
            return None

    async def get_max_event_idx(self, book_id: int, chapter_idx: int) -> int:
        payload = await self.get_chapter_cache(book_id, chapter_idx)
        return payload.max_event_idx if payload is not None else 0

    async def get_event_state(
        self, book_id: int, chapter_idx: int, event_idx: int | None = None
    ) -> GraphState | None:
        """Graph at ``event_idx``, clamped into the chapter's event range."""
        with graph_context(book_id=book_id, chapter=chapter_idx):
            payload = await self.get_chapter_cache(book_id, chapter_idx)
            if payload is None or payload.max_event_idx <= 0 or payload.base_snapshot is None:
                logger.debug("event_state_empty_chapter")
                return None

            target = payload.max_event_idx
            if event_idx is not None and event_idx > 0:
                target = min(event_idx, payload.max_event_idx)
            with graph_context(event_idx=target):
                return self._replay(payload, target)

    def _replay(self, payload: ChapterCachePayload, target: int) -> GraphState | None:
        result = try_reconstruct(payload, target)
        if not result.is_ok:
            logger.warning("event_state_replay_failed", kind=str(result.error_kind))
            return None
        state = result.value

        current = {e.id for e in state.elements if isinstance(e, GraphNode)}
        if state.event_idx <= payload.base_snapshot.event_idx:
            state.new_node_ids = sorted(current)
        else:
            previous = try_reconstruct(payload, state.event_idx - 1).value
            before = {e.id for e in previous.elements if isinstance(e, GraphNode)} if previous else set()
            state.new_node_ids = sorted(current - before)
        return state

    async def ensure_book_cache(
        self, book_id: int, cancel: asyncio.Event | None = None
    ) -> BookBuildResult:
        """Build every chapter cache of a book. Concurrent calls share one build."""
        return await self.kv.coalesce(
            BOOK_NAMESPACE, str(book_id), lambda: self._build_book(book_id, cancel)
        )

    async def _build_book(self, book_id: int, cancel: asyncio.Event | None) -> BookBuildResult:
        with graph_context(book_id=book_id):
            result = BookBuildResult(book_id=book_id, status=BuildStatus.COMPLETED)
            try:
                manifest = await self.manifests.prefetch(book_id, self.discovery.source.fetch_manifest)
                if manifest is None or not manifest.chapters:
                    logger.warning("book_build_no_manifest")
                    result.status = BuildStatus.FAILED
                    result.error_kind = ErrorKind.ABSENT
                    result.detail = "Manifest not available"
                    return result

                for chapter in manifest.chapters:
                    if cancel is not None and cancel.is_set():
                        raise BuildAbortedError(context={"chapter": chapter.idx})
                    payload = await self.discovery.discover(book_id, chapter.idx)
                    result.chapters_built.append(chapter.idx)
                    result.max_event_idx[chapter.idx] = payload.max_event_idx
            except BuildAbortedError as e:
                logger.info("book_build_aborted", chapters_done=len(result.chapters_built))
                result.status = BuildStatus.ABORTED
                result.error_kind = e.kind
                result.detail = e.detail
            except ReaderGraphError as e:
                logger.warning("book_build_failed", kind=str(e.kind), error=e.detail)
                result.status = BuildStatus.FAILED
                result.error_kind = e.kind
                result.detail = e.detail

            try:
                await self.kv.rebuild_book_summary(book_id)
            except ReaderGraphError as e:
                logger.warning("book_summary_rebuild_failed", kind=str(e.kind), error=e.detail)
                if result.status == BuildStatus.COMPLETED:
                    result.status = BuildStatus.FAILED
                    result.error_kind = e.kind
                    result.detail = e.detail

            logger.info(
                "book_build_finished", status=str(result.status), chapters=len(result.chapters_built)
            )
            return result

    async def locate_event(self, book_id: int, chapter_idx: int, position: int) -> EventLocation | None:
        """Map an absolute character offset to the event that contains it.

        Either source of event bounds may be unavailable; the other is used alone.
        """
        bounds: dict[int, tuple[int, int]] = {}
        try:
            cached = await self.kv.read_chapter(book_id, chapter_idx)
        except ReaderGraphError as e:
            logger.warning(
                "locate_event_cache_unavailable", book_id=book_id, chapter=chapter_idx, error=e.detail
            )
        else:
            if cached.is_ok:
                for summary in cached.value.event_summaries:
                    start = summary.start_pos or 0
                    end = summary.end_pos if summary.end_pos is not None else start
                    bounds[summary.event_idx] = (start, end)

        try:
            chapter = await self.manifests.get_chapter(book_id, chapter_idx)
        except ReaderGraphError as e:
            logger.warning(
                "locate_event_manifest_unavailable", book_id=book_id, chapter=chapter_idx, error=e.detail
            )
            chapter = None
        if chapter is not None:
            for stub in chapter.events:
                bounds[stub.idx] = (stub.start_pos, stub.end_pos)

        if not bounds:
            logger.debug("locate_event_no_events", book_id=book_id, chapter=chapter_idx)
            return None

        events = sorted(
            ((idx, start, max(end, start)) for idx, (start, end) in bounds.items()),
            key=lambda e: (e[0], e[1]),
        )

        def located(idx: int, start: int, end: int, progress: float) -> EventLocation:
            return EventLocation(
                book_id=book_id,
                chapter_idx=chapter_idx,
                event_idx=idx,
                start_pos=start,
                end_pos=end,
                progress=progress,
            )

        first = events[0]
        if position <= first[1]:
            return located(*first, 0.0)

        for idx, start, end in events:
            stop = end if end > start else start + 1
            if start <= position < stop:
                progress = (position - start) / max(stop - start, 1) * 100
                return located(idx, start, end, min(max(progress, 0.0), 100.0))

        return located(*events[-1], 100.0)

    async def invalidate_chapter(self, book_id: int, chapter_idx: int) -> bool:
        """Drop a chapter cache so the next read rediscovers it. False if the store failed."""
        try:
            await self.kv.delete_chapter(book_id, chapter_idx)
        except ReaderGraphError as e:
            logger.warning(
                "chapter_invalidate_failed", book_id=book_id, chapter=chapter_idx, error=e.detail
            )
            return False
        logger.info("chapter_cache_invalidated", book_id=book_id, chapter=chapter_idx)
        return True

    async def invalidate_book(self, book_id: int) -> int:
        """Drop every chapter cache of a book. Returns the number removed, 0 on store failure."""
        try:
            return await self.kv.clear_book(book_id)
        except ReaderGraphError as e:
            logger.warning("book_invalidate_failed", book_id=book_id, error=e.detail)
            return 0
