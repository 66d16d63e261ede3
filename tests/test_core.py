"""Tests for readergraph.core and readergraph.config."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from readergraph.config import Settings
from readergraph.core.exceptions import (
    BuildAbortedError,
    CacheCorruptionError,
    ErrorKind,
    EventNotFoundError,
    FetchError,
    InvariantViolationError,
    ReaderGraphError,
)
from readergraph.core.logging import add_graph_context, book_id_var, event_var, graph_context
from readergraph.core.resilience import is_retryable, retry_fetch
from readergraph.core.result import Result


class TestErrorKinds:
    @pytest.mark.parametrize(
        "exc,kind",
        [
            (EventNotFoundError(), ErrorKind.ABSENT),
            (FetchError(), ErrorKind.TRANSIENT),
            (CacheCorruptionError(), ErrorKind.CORRUPTED),
            (InvariantViolationError(), ErrorKind.INVARIANT),
            (BuildAbortedError(), ErrorKind.ABORTED),
        ],
    )
    def test_kind(self, exc, kind):
        assert exc.kind == kind
        assert isinstance(exc, ReaderGraphError)

    def test_default_detail_and_context(self):
        exc = BuildAbortedError(context={"chapter": 3})
        assert str(exc) == "Build aborted"
        assert exc.context == {"chapter": 3}


class TestResult:
    def test_ok(self):
        result = Result.ok(5)
        assert result.is_ok
        assert result.error_kind is None

    def test_miss(self):
        result = Result.miss()
        assert not result.is_ok
        assert result.unwrap_or("fallback") == "fallback"

    def test_fail(self):
        result = Result.fail(CacheCorruptionError())
        assert not result.is_ok
        assert result.error_kind == ErrorKind.CORRUPTED


class TestRetryFetch:
    @pytest.mark.parametrize(
        "exc,expected",
        [
            (FetchError(), True),
            (FetchError(status_code=503), True),
            (FetchError(status_code=429), False),
            (EventNotFoundError(), False),
            (ValueError(), False),
        ],
    )
    def test_is_retryable(self, exc, expected):
        assert is_retryable(exc) is expected

    async def test_retries_until_success(self):
        func = AsyncMock(side_effect=[FetchError("down"), "ok"])

        @retry_fetch(max_attempts=3, initial=0, jitter=0)
        async def fetch():
            return await func()

        assert await fetch() == "ok"
        assert func.await_count == 2


class TestLogging:
    def test_bound_context_added(self):
        with graph_context(book_id=7, chapter=2):
            event_dict = add_graph_context(None, "info", {"event": "x"})
        assert event_dict == {"event": "x", "book_id": 7, "chapter": 2}

    def test_explicit_fields_not_overwritten(self):
        with graph_context(book_id=7):
            event_dict = add_graph_context(None, "info", {"event": "x", "book_id": 9})
        assert event_dict["book_id"] == 9

    def test_context_restored_on_exit(self):
        with graph_context(book_id=1):
            with graph_context(book_id=2, event_idx=5):
                assert event_var.get() == 5
            assert book_id_var.get() == 1
            assert event_var.get() is None
        assert book_id_var.get() is None


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.chapter_cache_ttl_seconds == 86400
        assert settings.manifest_ttl_seconds == 900
        assert settings.discovery_empty_streak_limit == 2
        assert settings.default_node_weight == 3

    def test_trailing_slash_stripped(self):
        assert Settings(api_base_url="http://reader.test/").api_base_url == "http://reader.test"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("DISCOVERY_MAX_EVENTS", "42")
        assert Settings().discovery_max_events == 42
