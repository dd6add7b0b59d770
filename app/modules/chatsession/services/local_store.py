"""
Local key-value stores backing the anonymous identity marker and trial counter.

Redis when configured, otherwise a per-process dict. Any backend failure turns
the FallbackKeyValueStore into an in-memory store for the rest of its life.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from core.exceptions import StorageUnavailable

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...


class MemoryKeyValueStore:
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._mem: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._mem.get(key)

    async def set(self, key: str, value: str) -> None:
        self._mem[key] = value

    async def remove(self, key: str) -> None:
        self._mem.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._mem


def build_redis_client(url: str, socket_timeout: float = 2.0) -> "redis.Redis":
    """One pooled asyncio client; stores share it and only differ by namespace."""
    return redis.from_url(
        url,
        decode_responses=True,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
    )


class RedisKeyValueStore:
    """Namespaced string keys in Redis. Every call raises StorageUnavailable on backend errors."""

    def __init__(self, client: "redis.Redis", namespace: str = "chatsession"):
        self._r = client
        self.namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[str]:
        try:
            value = await self._r.get(self._key(key))
        except RedisError as exc:
            raise StorageUnavailable(f"Redis get failed: {exc}") from exc
        if value is None:
            return None
        return value.decode() if isinstance(value, bytes) else str(value)

    async def set(self, key: str, value: str) -> None:
        try:
            await self._r.set(self._key(key), value)
        except RedisError as exc:
            raise StorageUnavailable(f"Redis set failed: {exc}") from exc

    async def remove(self, key: str) -> None:
        try:
            await self._r.delete(self._key(key))
        except RedisError as exc:
            raise StorageUnavailable(f"Redis delete failed: {exc}") from exc


class FallbackKeyValueStore:
    """Wraps a primary store and degrades to process memory once it becomes unavailable."""

    def __init__(self, primary: KeyValueStore):
        self._primary = primary
        self._memory = MemoryKeyValueStore()
        self.degraded = False

    def _degrade(self, exc: Exception) -> None:
        if not self.degraded:
            logger.warning(f"[local-store] Primary store unavailable, continuing in memory: {exc}")
        self.degraded = True

    async def get(self, key: str) -> Optional[str]:
        if not self.degraded:
            try:
                return await self._primary.get(key)
            except StorageUnavailable as exc:
                self._degrade(exc)
        return await self._memory.get(key)

    async def set(self, key: str, value: str) -> None:
        if not self.degraded:
            try:
                await self._primary.set(key, value)
                return
            except StorageUnavailable as exc:
                self._degrade(exc)
        await self._memory.set(key, value)

    async def remove(self, key: str) -> None:
        if not self.degraded:
            try:
                await self._primary.remove(key)
                return
            except StorageUnavailable as exc:
                self._degrade(exc)
        await self._memory.remove(key)


def build_local_store(client_key: str, redis_client: Optional["redis.Redis"] = None) -> KeyValueStore:
    """
    Store for one client (the equivalent of one browser's local storage).

    client_key namespaces the Redis keys so two clients never share an
    anonymous identity marker.
    """
    if redis_client is not None:
        primary = RedisKeyValueStore(redis_client, namespace=f"chatsession:{client_key}")
        return FallbackKeyValueStore(primary)
    return FallbackKeyValueStore(MemoryKeyValueStore())
