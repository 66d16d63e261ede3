"""Book manifest cache.

Manifests are normalized on the way in and kept for 15 minutes in both the
in-memory tier and the durable store. Concurrent prefetches for one book share
a single upstream request.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from readergraph.core.exceptions import EventNotFoundError, ReaderGraphError
from readergraph.core.logging import get_logger
from readergraph.schemas.manifest import Chapter, EventStub, Manifest
from readergraph.storage.persistent_kv import MANIFEST_NAMESPACE, PersistentKV

logger = get_logger(__name__)

ManifestFetcher = Callable[[int], Awaitable[Manifest | Mapping[str, Any] | None]]


def coerce_manifest(raw: Manifest | Mapping[str, Any]) -> Manifest | None:
    """Accept a ``Manifest``, a raw manifest dict or an ``{isSuccess, result}`` envelope."""
    if isinstance(raw, Manifest):
        return raw
    if not isinstance(raw, Mapping):
        return None
    if "chapters" not in raw and ("result" in raw or "data" in raw):
        if raw.get("isSuccess") is False:
            return None
        inner = raw.get("result", raw.get("data"))
        return Manifest.from_api(inner) if isinstance(inner, Mapping) else None
    return Manifest.from_api(raw)


class ManifestStore:
    """Normalizes and caches book structure."""

    def __init__(self, kv: PersistentKV) -> None:
        self.kv = kv

    async def set(self, book_id: int, manifest: Manifest | Mapping[str, Any]) -> Manifest | None:
        normalized = coerce_manifest(manifest)
        if normalized is None:
            logger.warning("manifest_rejected", book_id=book_id)
            return None
        await self.kv.write_manifest(book_id, normalized)
        logger.debug("manifest_cached", book_id=book_id, chapters=len(normalized.chapters))
        return normalized

    async def get(self, book_id: int) -> Manifest | None:
        result = await self.kv.read_manifest(book_id)
        return result.value.data if result.is_ok else None

    async def has(self, book_id: int) -> bool:
        return await self.get(book_id) is not None

    async def invalidate(self, book_id: int) -> None:
        await self.kv.delete_manifest(book_id)

    async def prefetch(self, book_id: int, fetcher: ManifestFetcher) -> Manifest | None:
        """Return the cached manifest or fetch it once, however many callers ask."""
        try:
            cached = await self.get(book_id)
        except ReaderGraphError as e:
            logger.warning("manifest_cache_unreadable", book_id=book_id, error=e.detail)
            cached = None
        if cached is not None:
            return cached
        return await self.kv.coalesce(
            MANIFEST_NAMESPACE, str(book_id), lambda: self._fetch_and_store(book_id, fetcher)
        )

    async def _fetch_and_store(self, book_id: int, fetcher: ManifestFetcher) -> Manifest | None:
        try:
            raw = await fetcher(book_id)
        except EventNotFoundError:
            logger.info("manifest_not_available", book_id=book_id)
            return None
        except ReaderGraphError as e:
            logger.warning("manifest_prefetch_failed", book_id=book_id, kind=str(e.kind), error=e.detail)
            return None
        except Exception as e:
            logger.warning("manifest_prefetch_failed", book_id=book_id, error=type(e).__name__)
            return None
        if raw is None:
            return None
        try:
            return await self.set(book_id, raw)
        except ReaderGraphError as e:
            # the in-memory mirror still holds it for this session
            logger.warning("manifest_persist_failed", book_id=book_id, kind=str(e.kind), error=e.detail)
            return coerce_manifest(raw)

    async def get_chapter(self, book_id: int, chapter_idx: int) -> Chapter | None:
        manifest = await self.get(book_id)
        return manifest.chapter(chapter_idx) if manifest else None

    async def get_event_stub(self, book_id: int, chapter_idx: int, event_idx: int) -> EventStub | None:
        chapter = await self.get_chapter(book_id, chapter_idx)
        return chapter.event(event_idx) if chapter else None

    async def max_chapter(self, book_id: int) -> int:
        manifest = await self.get(book_id)
        return manifest.max_chapter if manifest else 0
