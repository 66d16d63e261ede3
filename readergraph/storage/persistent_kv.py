"""Two-tier (memory + durable) cache for chapter graphs and manifests.

Namespaces and durable keys:
  - chapter caches:   "{bookId}-{chapterIdx}"       TTL 24h
  - manifest caches:  "manifest_cache_{bookId}"     TTL 15min
  - book summaries:   "graph_cache_{bookId}"        no TTL, rebuilt on demand

Reads consult the in-memory mirror first, then the durable store. An entry
that fails to decode is deleted and reported as ``ErrorKind.CORRUPTED`` so the
caller rebuilds it. Expired entries are purged from both tiers.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from readergraph.config import Settings
from readergraph.config import settings as default_settings
from readergraph.core.exceptions import CacheCorruptionError
from readergraph.core.logging import get_logger
from readergraph.core.result import Result
from readergraph.schemas.cache import BookCacheSummary, ChapterCachePayload, ChapterSummaryEntry
from readergraph.schemas.manifest import Manifest, ManifestEnvelope
from readergraph.storage.context import CacheContext

if TYPE_CHECKING:
    from readergraph.storage.kv import KeyValueStore

logger = get_logger(__name__)

CHAPTER_NAMESPACE = "chapter"
MANIFEST_NAMESPACE = "manifest"
BOOK_NAMESPACE = "book"


def chapter_key(book_id: int, chapter_idx: int) -> str:
    return f"{book_id}-{chapter_idx}"


def manifest_key(book_id: int) -> str:
    return f"manifest_cache_{book_id}"


def summary_key(book_id: int) -> str:
    return f"graph_cache_{book_id}"


class PersistentKV:
    """Single source of truth for every cached artifact."""

    def __init__(
        self,
        store: KeyValueStore,
        context: CacheContext | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.context = context or CacheContext()
        self.settings = settings or default_settings

    # -- helpers ---------------------------------------------------------

    def _expired(self, timestamp: float, ttl: float | None) -> bool:
        if not ttl or ttl <= 0:
            return False
        return self.context.now() - timestamp > ttl

    async def _load[M: BaseModel](self, key: str, model: type[M]) -> Result[M]:
        raw = await self.store.get(key)
        if raw is None:
            return Result.miss()
        try:
            return Result.ok(model.model_validate_json(raw))
        except (PydanticValidationError, ValueError) as e:
            logger.warning("kv_entry_corrupted", key=key, error=str(e)[:200])
            await self.store.delete(key)
            return Result.fail(
                CacheCorruptionError(f"Unreadable cache entry {key!r}", context={"key": key})
            )

    # -- chapter caches --------------------------------------------------

    async def read_chapter(self, book_id: int, chapter_idx: int) -> Result[ChapterCachePayload]:
        key = chapter_key(book_id, chapter_idx)
        payload = self.context.chapters.get(key)
        if payload is None:
            loaded = await self._load(key, ChapterCachePayload)
            if not loaded.is_ok:
                return loaded
            payload = loaded.value

        if self._expired(payload.timestamp, self.settings.chapter_cache_ttl_seconds):
            logger.info("chapter_cache_expired", book_id=book_id, chapter=chapter_idx)
            await self.delete_chapter(book_id, chapter_idx)
            return Result.miss()

        self.context.chapters[key] = payload
        return Result.ok(payload)

    async def write_chapter(self, payload: ChapterCachePayload) -> None:
        key = chapter_key(payload.book_id, payload.chapter_idx)
        await self.store.set(key, payload.model_dump_json())
        self.context.chapters[key] = payload
        logger.debug(
            "chapter_cache_written",
            book_id=payload.book_id,
            chapter=payload.chapter_idx,
            max_event_idx=payload.max_event_idx,
            diffs=len(payload.diffs),
        )

    async def delete_chapter(self, book_id: int, chapter_idx: int) -> None:
        key = chapter_key(book_id, chapter_idx)
        self.context.chapters.pop(key, None)
        await self.store.delete(key)

    async def cached_chapters(self, book_id: int) -> list[int]:
        """Chapter indices with a durable cache entry for this book."""
        prefix = f"{book_id}-"
        indices = []
        for key in await self.store.keys(prefix):
            suffix = key[len(prefix) :]
            if suffix.isdigit():
                indices.append(int(suffix))
        return sorted(indices)

    # -- manifest caches -------------------------------------------------

    async def read_manifest(self, book_id: int) -> Result[ManifestEnvelope]:
        key = manifest_key(book_id)
        envelope = self.context.manifests.get(key)
        if envelope is None:
            loaded = await self._load(key, ManifestEnvelope)
            if not loaded.is_ok:
                return loaded
            envelope = loaded.value

        if self._expired(envelope.timestamp, self.settings.manifest_ttl_seconds):
            logger.info("manifest_cache_expired", book_id=book_id)
            await self.delete_manifest(book_id)
            return Result.miss()

        self.context.manifests[key] = envelope
        return Result.ok(envelope)

    async def write_manifest(self, book_id: int, manifest: Manifest) -> ManifestEnvelope:
        key = manifest_key(book_id)
        envelope = ManifestEnvelope(data=manifest, timestamp=self.context.now())
        self.context.manifests[key] = envelope
        await self.store.set(key, envelope.model_dump_json())
        return envelope

    async def delete_manifest(self, book_id: int) -> None:
        key = manifest_key(book_id)
        self.context.manifests.pop(key, None)
        await self.store.delete(key)

    # -- book summaries --------------------------------------------------

    async def read_book_summary(self, book_id: int) -> Result[BookCacheSummary]:
        key = summary_key(book_id)
        summary = self.context.summaries.get(key)
        if summary is not None:
            return Result.ok(summary)
        loaded = await self._load(key, BookCacheSummary)
        if loaded.is_ok:
            self.context.summaries[key] = loaded.value
        return loaded

    async def rebuild_book_summary(self, book_id: int) -> BookCacheSummary:
        """Recompute the per-chapter ``max_event_idx`` roll-up from live chapter caches."""
        entries = []
        for chapter_idx in await self.cached_chapters(book_id):
            result = await self.read_chapter(book_id, chapter_idx)
            if not result.is_ok:
                continue
            payload = result.value
            entries.append(
                ChapterSummaryEntry(
                    chapter_idx=chapter_idx,
                    max_event_idx=payload.max_event_idx,
                    event_count=len(payload.event_summaries),
                    timestamp=payload.timestamp,
                )
            )

        summary = BookCacheSummary(book_id=book_id, chapters=entries, updated_at=self.context.now())
        key = summary_key(book_id)
        await self.store.set(key, summary.model_dump_json())
        self.context.summaries[key] = summary
        logger.info("book_summary_rebuilt", book_id=book_id, chapters=len(entries))
        return summary

    async def clear_book(self, book_id: int) -> int:
        """Drop every chapter cache and the summary of a book. Returns chapters removed."""
        chapters = await self.cached_chapters(book_id)
        for chapter_idx in chapters:
            await self.delete_chapter(book_id, chapter_idx)
        key = summary_key(book_id)
        self.context.summaries.pop(key, None)
        await self.store.delete(key)
        logger.info("book_cache_cleared", book_id=book_id, chapters=len(chapters))
        return len(chapters)

    # -- request coalescing ----------------------------------------------

    async def coalesce[T](
        self,
        namespace: str,
        key: str,
        factory: Callable[[], Awaitable[T]],
    ) -> T:
        """Run ``factory`` once per (namespace, key); concurrent callers share the result."""
        slot = (namespace, key)
        pending: asyncio.Future[Any] | None = self.context.inflight.get(slot)
        if pending is not None:
            logger.debug("kv_request_coalesced", namespace=namespace, key=key)
            return await asyncio.shield(pending)

        task = asyncio.ensure_future(factory())
        self.context.inflight[slot] = task

        def _release(done: asyncio.Future[Any]) -> None:
            if self.context.inflight.get(slot) is done:
                del self.context.inflight[slot]

        task.add_done_callback(_release)
        return await asyncio.shield(task)
