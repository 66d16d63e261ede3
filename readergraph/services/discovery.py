"""Chapter event discovery.

Finds every event of a chapter and turns them into a cached payload:

  1. A cached payload is returned as-is unless ``force_refresh`` is set.
  2. If the manifest declares events for the chapter, each is fetched in
     order. A failed fetch still yields a content-less stub with the manifest
     bounds, so one bad event never drops the chapter.
  3. Otherwise events are scanned from 1 upward until two consecutive
     events have no content, or the scan bound is reached.

A short pause between calls keeps the scan from flooding the API. A chapter
with no events at all is cached as an explicit empty payload so it is not
scanned again.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from readergraph.config import Settings
from readergraph.config import settings as default_settings
from readergraph.core.exceptions import EventNotFoundError, ReaderGraphError
from readergraph.core.logging import get_logger
from readergraph.schemas.cache import ChapterCachePayload, PayloadSource
from readergraph.schemas.events import EventRecord, RawEventData
from readergraph.services.cache_builder import CacheBuilder
from readergraph.storage.persistent_kv import CHAPTER_NAMESPACE, chapter_key

if TYPE_CHECKING:
    from readergraph.clients.base import GraphSource
    from readergraph.schemas.manifest import EventStub
    from readergraph.services.manifest_store import ManifestStore
    from readergraph.storage.persistent_kv import PersistentKV

logger = get_logger(__name__)


class EventDiscovery:
    """Discovers, builds and persists chapter caches."""

    def __init__(
        self,
        kv: PersistentKV,
        manifests: ManifestStore,
        source: GraphSource,
        builder: CacheBuilder | None = None,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.kv = kv
        self.manifests = manifests
        self.source = source
        self.settings = settings or default_settings
        self.builder = builder or CacheBuilder(self.settings, clock=kv.context.clock)
        self._sleep = sleep

    async def discover(
        self, book_id: int, chapter_idx: int, force_refresh: bool = False
    ) -> ChapterCachePayload:
        """Cached payload for the chapter, discovering and building it when needed."""
        if not force_refresh:
            cached = await self.kv.read_chapter(book_id, chapter_idx)
            if cached.is_ok:
                logger.debug("discovery_cache_hit", book_id=book_id, chapter=chapter_idx)
                return cached.value

        return await self.kv.coalesce(
            CHAPTER_NAMESPACE,
            chapter_key(book_id, chapter_idx),
            lambda: self._discover(book_id, chapter_idx),
        )

    async def _discover(self, book_id: int, chapter_idx: int) -> ChapterCachePayload:
        stubs = await self._declared_events(book_id, chapter_idx)
        if stubs:
            records = await self._fetch_declared(book_id, chapter_idx, stubs)
            source = PayloadSource.MANIFEST
        else:
            records = await self._scan(book_id, chapter_idx)
            source = PayloadSource.SCAN
        if not records:
            source = PayloadSource.EMPTY

        payload = self.builder.build(book_id, chapter_idx, records, source=source)
        await self.kv.write_chapter(payload)
        logger.info(
            "discovery_completed",
            book_id=book_id,
            chapter=chapter_idx,
            source=str(source),
            events=len(records),
            max_event_idx=payload.max_event_idx,
        )
        return payload

    async def _declared_events(self, book_id: int, chapter_idx: int) -> list[EventStub]:
        manifest = await self.manifests.prefetch(book_id, self.source.fetch_manifest)
        chapter = manifest.chapter(chapter_idx) if manifest else None
        return list(chapter.events) if chapter else []

    async def _fetch(self, book_id: int, chapter_idx: int, event_idx: int) -> RawEventData | None:
        """One event fetch; absence and failures both come back as None."""
        try:
            return await self.source.fetch_event(book_id, chapter_idx, event_idx)
        except EventNotFoundError:
            logger.debug("event_not_generated", book_id=book_id, chapter=chapter_idx, event_idx=event_idx)
        except ReaderGraphError as e:
            logger.warning(
                "event_fetch_failed",
                book_id=book_id,
                chapter=chapter_idx,
                event_idx=event_idx,
                kind=str(e.kind),
                error=e.detail,
            )
        except Exception as e:
            logger.warning(
                "event_fetch_failed",
                book_id=book_id,
                chapter=chapter_idx,
                event_idx=event_idx,
                error=type(e).__name__,
            )
        return None

    async def _fetch_declared(
        self, book_id: int, chapter_idx: int, stubs: list[EventStub]
    ) -> list[EventRecord]:
        records = []
        for position, stub in enumerate(sorted(stubs, key=lambda s: s.idx)):
            if position:
                await self._sleep(self.settings.discovery_delay_seconds)
            data = await self._fetch(book_id, chapter_idx, stub.idx)
            if data is None:
                records.append(EventRecord.from_stub(chapter_idx, stub))
            else:
                records.append(EventRecord.from_raw(chapter_idx, stub.idx, data, stub))
        return records

    async def _scan(self, book_id: int, chapter_idx: int) -> list[EventRecord]:
        records = []
        empty_streak = 0
        event_idx = 0
        limit = self.settings.discovery_empty_streak_limit
        while event_idx < self.settings.discovery_max_events:
            event_idx += 1
            if event_idx > 1:
                await self._sleep(self.settings.discovery_delay_seconds)
            data = await self._fetch(book_id, chapter_idx, event_idx)
            if data is not None and data.has_data:
                empty_streak = 0
                records.append(EventRecord.from_raw(chapter_idx, event_idx, data))
                continue
            empty_streak += 1
            if empty_streak >= limit:
                logger.debug("discovery_scan_exhausted", chapter=chapter_idx, last_event=event_idx)
                break
        else:
            logger.warning(
                "discovery_scan_bound_reached",
                book_id=book_id,
                chapter=chapter_idx,
                max_events=self.settings.discovery_max_events,
            )
        return records
