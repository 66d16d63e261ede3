"""HTTP ``GraphSource`` for the reader backend.

Endpoints:
  GET /api/graph/fine?bookId=&chapterIdx=&eventIdx=  -> {isSuccess, result}
  GET /api/books/{bookId}/manifest                   -> {isSuccess, result}
"""

from __future__ import annotations

from typing import Any

import httpx

from readergraph.config import Settings
from readergraph.config import settings as default_settings
from readergraph.core.exceptions import EventNotFoundError, FetchError
from readergraph.core.logging import get_logger
from readergraph.core.resilience import retry_fetch
from readergraph.schemas.events import RawEventData
from readergraph.schemas.manifest import Manifest

logger = get_logger(__name__)


class GraphApiClient:
    """Async client for the event graph and manifest endpoints."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self.client = client or httpx.AsyncClient(
            base_url=base_url or self.settings.api_base_url,
            timeout=self.settings.http_timeout_seconds,
            headers={"Accept": "application/json"},
        )

    async def __aenter__(self) -> GraphApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            response = await self.client.get(path, params=params)
        except httpx.HTTPError as e:
            raise FetchError(
                f"{type(e).__name__} on GET {path}", context={"path": path, "params": params}
            ) from e

        if response.status_code == 404:
            raise EventNotFoundError(f"GET {path} returned 404", context={"params": params})
        if response.status_code >= 400:
            raise FetchError(
                f"GET {path} returned {response.status_code}",
                status_code=response.status_code,
                context={"params": params},
            )

        try:
            body = response.json()
        except ValueError as e:
            raise FetchError(f"GET {path} returned invalid JSON", context={"path": path}) from e
        if not isinstance(body, dict):
            raise FetchError(f"GET {path} returned a non-object body", context={"path": path})
        return body

    async def fetch_event(self, book_id: int, chapter_idx: int, event_idx: int) -> RawEventData:
        params = {"bookId": book_id, "chapterIdx": chapter_idx, "eventIdx": event_idx}
        body = await self._get_json("/api/graph/fine", params=params)
        if body.get("isSuccess") is False or body.get("result") is None:
            raise EventNotFoundError("Event graph not generated", context=params)
        return RawEventData.from_api(body["result"])

    async def _fetch_manifest_once(self, book_id: int) -> Manifest:
        body = await self._get_json(f"/api/books/{book_id}/manifest")
        result = body.get("result", body.get("data"))
        if body.get("isSuccess") is False or not isinstance(result, dict):
            raise EventNotFoundError("Manifest not available", context={"book_id": book_id})
        return Manifest.from_api(result)

    async def fetch_manifest(self, book_id: int) -> Manifest:
        retrying = retry_fetch(
            max_attempts=self.settings.http_retry_attempts,
            initial=self.settings.http_retry_initial_wait,
            jitter=self.settings.http_retry_jitter,
        )
        manifest = await retrying(self._fetch_manifest_once)(book_id)
        logger.info("manifest_fetched", book_id=book_id, chapters=len(manifest.chapters))
        return manifest
