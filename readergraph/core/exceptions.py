"""Custom exception hierarchy for readergraph.

Every failure carries an ``ErrorKind`` so callers (and tests) can branch on
the category instead of the concrete class.

Hierarchy:
    ReaderGraphError (base)
    +-- EventNotFoundError       -> absent     (404 / not generated yet)
    +-- FetchError               -> transient  (network, 5xx)
    +-- StorageError             -> transient  (durable store unreachable)
    +-- CacheCorruptionError     -> corrupted  (unreadable durable entry)
    +-- InvariantViolationError  -> invariant  (e.g. no base snapshot)
    +-- BuildAbortedError        -> aborted    (cooperative cancellation)
"""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    """Failure taxonomy of the graph cache."""

    ABSENT = "absent"
    TRANSIENT = "transient"
    CORRUPTED = "corrupted"
    INVARIANT = "invariant"
    ABORTED = "aborted"


class ReaderGraphError(Exception):
    """Base exception for all readergraph errors."""

    kind: ErrorKind = ErrorKind.TRANSIENT
    detail: str = "Graph cache error"

    def __init__(self, detail: str | None = None, *, context: dict[str, object] | None = None):
        self.detail = detail or self.__class__.detail
        self.context = context or {}
        super().__init__(self.detail)


class EventNotFoundError(ReaderGraphError):
    """Event or manifest not generated yet."""

    kind = ErrorKind.ABSENT
    detail = "Resource not generated yet"


class FetchError(ReaderGraphError):
    """Network or upstream failure while fetching."""

    kind = ErrorKind.TRANSIENT
    detail = "Fetch failed"

    def __init__(
        self,
        detail: str | None = None,
        *,
        status_code: int | None = None,
        context: dict[str, object] | None = None,
    ):
        self.status_code = status_code
        super().__init__(detail, context=context)


class StorageError(ReaderGraphError):
    """The durable key-value store failed."""

    kind = ErrorKind.TRANSIENT
    detail = "Storage unavailable"


class CacheCorruptionError(ReaderGraphError):
    """A durable cache entry could not be decoded."""

    kind = ErrorKind.CORRUPTED
    detail = "Cache entry corrupted"


class InvariantViolationError(ReaderGraphError):
    """Cached data is structurally unusable; a full rebuild is required."""

    kind = ErrorKind.INVARIANT
    detail = "Cache invariant violated"


class BuildAbortedError(ReaderGraphError):
    """A bulk build was cancelled by its caller."""

    kind = ErrorKind.ABORTED
    detail = "Build aborted"
