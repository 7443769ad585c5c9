"""
Key-value store used as the only persistence of the catalog pipeline.

Values are JSON strings addressed by string keys. Each ``get``/``put`` is
atomic on its own; there are no cross-key transactions, so every writer in
the pipeline rebuilds and overwrites its keys instead of patching them.

Backends:
    - RedisKeyValueStore: production, plain GET/SET on redis.asyncio
    - InMemoryKeyValueStore: process-local dict for development and tests

Usage:
    store = get_kv_store()
    await store.put_json("product_categories", ["Kabely"])
    categories = await store.get_json("product_categories", default=[])
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.core.exceptions import StorageError

logger = logging.getLogger(__name__)


class KeyValueStore:
    """Async string map with JSON helpers."""

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def put(self, key: str, value: str) -> None:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None

    # ============ JSON helpers ============

    async def get_json(self, key: str, default: Any = None) -> Any:
        """
        Read and decode a JSON value.

        Returns ``default`` when the key is absent. A present but undecodable
        value raises StorageError; callers that must tell the two apart
        (the merge engine) read the raw string with ``get`` instead.
        """
        raw = await self.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            raise StorageError(
                f"Stored value under '{key}' is not valid JSON: {e}",
                key=key,
                operation="decode",
            ) from e

    async def put_json(self, key: str, value: Any) -> None:
        """Encode ``value`` as JSON and store it."""
        try:
            payload = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise StorageError(
                f"Cannot serialize value for '{key}': {e}",
                key=key,
                operation="encode",
            ) from e
        await self.put(key, payload)


class RedisKeyValueStore(KeyValueStore):
    """
    Redis backend (plain strings via GET / SET / DEL).

    Any RedisError or OSError is re-raised as StorageError with the key and the
    operation so the caller can log it.
    """

    def __init__(self, redis_url: str = "redis://redis:6379/0", namespace: str = ""):
        self.redis_url = redis_url
        self.namespace = namespace
        self._redis: Optional[aioredis.Redis] = None

    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    async def _get_redis(self) -> aioredis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = aioredis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def get(self, key: str) -> Optional[str]:
        client = await self._get_redis()
        try:
            return await client.get(self._key(key))
        except (RedisError, OSError) as e:
            raise StorageError(f"Redis GET '{key}' failed: {e}", key=key, operation="get") from e

    async def put(self, key: str, value: str) -> None:
        client = await self._get_redis()
        try:
            await client.set(self._key(key), value)
        except (RedisError, OSError) as e:
            raise StorageError(f"Redis SET '{key}' failed: {e}", key=key, operation="put") from e

    async def delete(self, key: str) -> None:
        client = await self._get_redis()
        try:
            await client.delete(self._key(key))
        except (RedisError, OSError) as e:
            raise StorageError(f"Redis DEL '{key}' failed: {e}", key=key, operation="delete") from e

    async def close(self) -> None:
        """Close the cached Redis client (if initialized)."""
        if self._redis is None:
            return
        await self._redis.aclose()
        self._redis = None


class InMemoryKeyValueStore(KeyValueStore):
    """Dict-backed store. Every call yields to the event loop like a real round trip."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        await asyncio.sleep(0)
        return self.data.get(key)

    async def put(self, key: str, value: str) -> None:
        await asyncio.sleep(0)
        self.data[key] = value

    async def delete(self, key: str) -> None:
        await asyncio.sleep(0)
        self.data.pop(key, None)


_kv_store: Optional[KeyValueStore] = None


def get_kv_store() -> KeyValueStore:
    """Get the process-wide store for the configured backend."""
    global _kv_store
    if _kv_store is None:
        from app.config import get_settings
        settings = get_settings()
        if settings.kv_backend == "memory":
            logger.warning("Using in-memory key-value store, data is lost on restart")
            _kv_store = InMemoryKeyValueStore()
        else:
            _kv_store = RedisKeyValueStore(settings.redis_url, namespace=settings.kv_namespace)
    return _kv_store


async def close_kv_store() -> None:
    """Close and forget the process-wide store."""
    global _kv_store
    if _kv_store is None:
        return
    await _kv_store.close()
    _kv_store = None
