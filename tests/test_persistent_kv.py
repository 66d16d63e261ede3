"""Tests for readergraph.storage.persistent_kv: tiers, TTLs, corruption and coalescing."""

from __future__ import annotations

import asyncio

import pytest

from readergraph.core.exceptions import ErrorKind
from readergraph.schemas.manifest import Manifest
from readergraph.services.cache_builder import CacheBuilder
from readergraph.storage.persistent_kv import (
    chapter_key,
    manifest_key,
    summary_key,
)

BOOK_ID = 7


@pytest.fixture
def build_payload(settings, clock, make_character, make_relation, make_record):
    builder = CacheBuilder(settings, clock=clock)

    def _factory(chapter_idx: int = 1, events: int = 2):
        records = [
            make_record(
                i,
                [make_character(str(i)), make_character(str(i + 1))],
                [make_relation(str(i), str(i + 1), "친구")],
                chapter_idx=chapter_idx,
            )
            for i in range(1, events + 1)
        ]
        return builder.build(BOOK_ID, chapter_idx, records)

    return _factory


class TestKeys:
    def test_key_formats(self):
        assert chapter_key(7, 3) == "7-3"
        assert manifest_key(7) == "manifest_cache_7"
        assert summary_key(7) == "graph_cache_7"


class TestChapterCache:
    async def test_write_then_read_from_memory(self, kv, build_payload):
        payload = build_payload()
        await kv.write_chapter(payload)
        result = await kv.read_chapter(BOOK_ID, 1)
        assert result.is_ok
        assert result.value is payload

    async def test_read_from_durable_store_after_restart(self, kv, store, build_payload):
        payload = build_payload()
        await kv.write_chapter(payload)
        kv.context.clear()
        result = await kv.read_chapter(BOOK_ID, 1)
        assert result.value == payload
        assert await store.get("7-1") is not None

    async def test_miss(self, kv):
        result = await kv.read_chapter(BOOK_ID, 1)
        assert not result.is_ok
        assert result.error is None

    async def test_expired_entry_purged_from_both_tiers(self, kv, store, clock, build_payload):
        await kv.write_chapter(build_payload())
        clock.advance(24 * 60 * 60 + 1)
        result = await kv.read_chapter(BOOK_ID, 1)
        assert not result.is_ok
        assert await store.get("7-1") is None
        assert "7-1" not in kv.context.chapters

    async def test_corrupted_entry_reported_and_deleted(self, kv, store):
        await store.set("7-1", "{not json")
        result = await kv.read_chapter(BOOK_ID, 1)
        assert result.error_kind == ErrorKind.CORRUPTED
        assert await store.get("7-1") is None

    async def test_wrong_shape_is_corruption(self, kv, store):
        await store.set("7-1", '{"book_id": "x"}')
        result = await kv.read_chapter(BOOK_ID, 1)
        assert result.error_kind == ErrorKind.CORRUPTED

    async def test_cached_chapters_only_this_book(self, kv, store):
        for key in ("7-1", "7-10", "7-2", "70-1", "manifest_cache_7", "7-x"):
            await store.set(key, "{}")
        assert await kv.cached_chapters(BOOK_ID) == [1, 2, 10]


class TestManifestCache:
    async def test_roundtrip(self, kv, sample_manifest):
        manifest = Manifest.from_api(sample_manifest)
        await kv.write_manifest(BOOK_ID, manifest)
        kv.context.clear()
        result = await kv.read_manifest(BOOK_ID)
        assert result.value.data == manifest

    async def test_expires_after_fifteen_minutes(self, kv, store, clock, sample_manifest):
        await kv.write_manifest(BOOK_ID, Manifest.from_api(sample_manifest))
        clock.advance(15 * 60 - 1)
        assert (await kv.read_manifest(BOOK_ID)).is_ok
        clock.advance(2)
        assert not (await kv.read_manifest(BOOK_ID)).is_ok
        assert await store.get("manifest_cache_7") is None


class TestBookSummary:
    async def test_rebuild_rolls_up_chapters(self, kv, build_payload):
        await kv.write_chapter(build_payload(1, events=3))
        await kv.write_chapter(build_payload(2, events=1))
        summary = await kv.rebuild_book_summary(BOOK_ID)
        assert summary.max_event_idx(1) == 3
        assert summary.max_event_idx(2) == 1
        assert summary.max_event_idx(9) == 0
        assert summary.max_event_count == 3

    async def test_read_after_rebuild(self, kv, build_payload):
        await kv.write_chapter(build_payload(1))
        await kv.rebuild_book_summary(BOOK_ID)
        kv.context.clear()
        result = await kv.read_book_summary(BOOK_ID)
        assert [c.chapter_idx for c in result.value.chapters] == [1]

    async def test_clear_book(self, kv, store, build_payload):
        await kv.write_chapter(build_payload(1))
        await kv.write_chapter(build_payload(2))
        await kv.rebuild_book_summary(BOOK_ID)
        removed = await kv.clear_book(BOOK_ID)
        assert removed == 2
        assert await store.keys("7-") == []
        assert await store.get("graph_cache_7") is None


class TestCoalesce:
    async def test_concurrent_callers_share_one_call(self, kv):
        calls = 0

        async def factory():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0)
            return "built"

        results = await asyncio.gather(*(kv.coalesce("chapter", "7-1", factory) for _ in range(5)))
        assert results == ["built"] * 5
        assert calls == 1
        assert kv.context.inflight == {}

    async def test_different_keys_run_separately(self, kv):
        calls: list[str] = []

        async def factory(key: str):
            calls.append(key)
            await asyncio.sleep(0)
            return key

        await asyncio.gather(
            kv.coalesce("chapter", "7-1", lambda: factory("7-1")),
            kv.coalesce("chapter", "7-2", lambda: factory("7-2")),
        )
        assert sorted(calls) == ["7-1", "7-2"]

    async def test_failure_reaches_every_caller_and_clears_slot(self, kv):
        async def factory():
            await asyncio.sleep(0)
            raise RuntimeError("boom")

        results = await asyncio.gather(
            kv.coalesce("book", "7", factory),
            kv.coalesce("book", "7", factory),
            return_exceptions=True,
        )
        assert all(isinstance(r, RuntimeError) for r in results)
        assert kv.context.inflight == {}
