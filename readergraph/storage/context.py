"""Explicit cache context shared by the storage-facing components.

Holds the in-process mirrors and in-flight futures that would otherwise be
module-level state. One context per reader session.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from readergraph.schemas.cache import BookCacheSummary, ChapterCachePayload
from readergraph.schemas.manifest import ManifestEnvelope


@dataclass
class CacheContext:
    """In-memory tier plus request-coalescing state."""

    clock: Callable[[], float] = time.time
    chapters: dict[str, ChapterCachePayload] = field(default_factory=dict)
    manifests: dict[str, ManifestEnvelope] = field(default_factory=dict)
    summaries: dict[str, BookCacheSummary] = field(default_factory=dict)
    inflight: dict[tuple[str, str], asyncio.Future[Any]] = field(default_factory=dict)

    def now(self) -> float:
        return self.clock()

    def clear(self) -> None:
        self.chapters.clear()
        self.manifests.clear()
        self.summaries.clear()
