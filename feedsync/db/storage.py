# feedsync/db/storage.py
# Persisted key-value stores used by the offline feed cache.
# The interface mirrors the mobile AsyncStorage API the cache was written against.

from __future__ import annotations

from typing import Any, Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from feedsync.config import Settings, settings
from feedsync.errors import StorageError


class KeyValueStore(Protocol):
    async def get_item(self, key: str) -> Optional[str]: ...

    async def set_item(self, key: str, value: str) -> None: ...

    async def remove_item(self, key: str) -> None: ...

    async def multi_remove(self, keys: list[str]) -> None: ...

    async def get_all_keys(self) -> list[str]: ...

    async def ping(self) -> bool: ...


class InMemoryKeyValueStore:
    """Process-local store; used for local runs and tests."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    async def multi_remove(self, keys: list[str]) -> None:
        for key in keys:
            self._data.pop(key, None)

    async def get_all_keys(self) -> list[str]:
        return list(self._data.keys())

    async def ping(self) -> bool:
        return True


class RedisKeyValueStore:
    """Redis-backed store. Keys are listed with SCAN restricted to `namespace`."""

    def __init__(self, url: str = None, namespace: str = "", client: Any = None):
        self.url = url or settings.REDIS_URL
        self.namespace = namespace
        self._client = client

    async def _get_client(self) -> Any:
        """Get or create the async Redis client (lazy init)."""
        if self._client is None:
            self._client = aioredis.from_url(self.url, decode_responses=True)
        return self._client

    async def get_item(self, key: str) -> Optional[str]:
        client = await self._get_client()
        try:
            return await client.get(key)
        except RedisError as e:
            raise StorageError(f"get failed for {key}", details={"reason": str(e)}) from e

    async def set_item(self, key: str, value: str) -> None:
        client = await self._get_client()
        try:
            await client.set(key, value)
        except RedisError as e:
            raise StorageError(f"set failed for {key}", details={"reason": str(e)}) from e

    async def remove_item(self, key: str) -> None:
        client = await self._get_client()
        try:
            await client.delete(key)
        except RedisError as e:
            raise StorageError(f"delete failed for {key}", details={"reason": str(e)}) from e

    async def multi_remove(self, keys: list[str]) -> None:
        if not keys:
            return
        client = await self._get_client()
        try:
            await client.delete(*keys)
        except RedisError as e:
            raise StorageError("multi delete failed", details={"reason": str(e)}) from e

    async def get_all_keys(self) -> list[str]:
        client = await self._get_client()
        cursor = 0
        found: list[str] = []
        pattern = f"{self.namespace}*"
        try:
            while True:
                cursor, keys = await client.scan(cursor=cursor, match=pattern, count=500)
                found.extend(keys)
                if cursor == 0:
                    break
        except RedisError as e:
            raise StorageError("key scan failed", details={"reason": str(e)}) from e
        return found

    async def ping(self) -> bool:
        client = await self._get_client()
        try:
            return bool(await client.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def create_store(cfg: Settings = None) -> KeyValueStore:
    """Build the store selected by STORAGE_BACKEND."""
    cfg = cfg or settings
    if cfg.STORAGE_BACKEND == "redis":
        return RedisKeyValueStore(url=cfg.REDIS_URL, namespace=cfg.FEED_CACHE_PREFIX)
    return InMemoryKeyValueStore()
