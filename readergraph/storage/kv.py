"""Durable key-value backends.

Every backend stores opaque strings (JSON blobs) under string keys. The
in-memory backend serves tests and ephemeral sessions; the Redis backend is
the production store.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from redis.exceptions import RedisError

from readergraph.core.exceptions import StorageError
from readergraph.core.logging import get_logger

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from readergraph.config import Settings

logger = get_logger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    """Async string -> string store."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def keys(self, prefix: str = "") -> list[str]: ...


class MemoryKeyValueStore:
    """Dict-backed store."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))

    def __len__(self) -> int:
        return len(self._data)


class RedisKeyValueStore:
    """Redis-backed store; keys are namespaced with ``key_prefix``.

    Expects a client created with ``decode_responses=True``.
    """

    def __init__(self, redis: Redis, key_prefix: str = "readergraph:") -> None:
        self.redis = redis
        self.key_prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def get(self, key: str) -> str | None:
        try:
            return await self.redis.get(self._key(key))
        except RedisError as e:
            raise StorageError(f"Redis GET failed: {e}", context={"key": key}) from e

    async def set(self, key: str, value: str) -> None:
        try:
            await self.redis.set(self._key(key), value)
        except RedisError as e:
            raise StorageError(f"Redis SET failed: {e}", context={"key": key}) from e

    async def delete(self, key: str) -> None:
        try:
            await self.redis.delete(self._key(key))
        except RedisError as e:
            raise StorageError(f"Redis DEL failed: {e}", context={"key": key}) from e

    async def keys(self, prefix: str = "") -> list[str]:
        found: list[str] = []
        try:
            async for raw_key in self.redis.scan_iter(match=f"{self._key(prefix)}*"):
                found.append(raw_key[len(self.key_prefix) :])
        except RedisError as e:
            raise StorageError(f"Redis SCAN failed: {e}", context={"prefix": prefix}) from e
        return sorted(found)

    async def close(self) -> None:
        await self.redis.aclose()


def create_store(settings: Settings) -> KeyValueStore:
    """Pick a backend from ``settings.redis_url`` (``memory://`` = in-process)."""
    if settings.redis_url.startswith("memory://"):
        logger.info("kv_store_selected", backend="memory")
        return MemoryKeyValueStore()

    from redis.asyncio import Redis

    redis = Redis.from_url(settings.redis_url, decode_responses=True)
    logger.info("kv_store_selected", backend="redis", prefix=settings.redis_key_prefix)
    return RedisKeyValueStore(redis, key_prefix=settings.redis_key_prefix)
