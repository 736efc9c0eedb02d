# localerank/services/kv_store.py
"""Persistent key-value stores behind the coordinate cache and the bookmark list.

`RedisKeyValueStore` wraps redis.asyncio; `InMemoryKeyValueStore` offers the
same coroutine API for tests and for deployments without Redis. Storage
failures are logged and degrade to "missing" rather than propagating.
"""
import json
import time
from typing import Any, Optional, Protocol

import structlog
from redis.asyncio import Redis

logger = structlog.get_logger(__name__)


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...
    async def set(self, key: str, value: str) -> None: ...
    async def setex(self, key: str, ttl: int, value: str) -> None: ...
    async def delete(self, key: str) -> None: ...


class RedisKeyValueStore:
    def __init__(self, url: Optional[str]):
        if not url:
            raise ValueError("REDIS_URL is not set in the environment")
        self._redis = Redis.from_url(url, decode_responses=True)

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._redis.get(key)
        except Exception as e:
            logger.error("kv_get_error", key=key, error=str(e))
            return None

    async def set(self, key: str, value: str) -> None:
        try:
            await self._redis.set(key, value)
        except Exception as e:
            logger.error("kv_set_error", key=key, error=str(e))

    async def setex(self, key: str, ttl: int, value: str) -> None:
        try:
            await self._redis.setex(key, ttl, value)
        except Exception as e:
            logger.error("kv_setex_error", key=key, error=str(e))

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except Exception as e:
            logger.error("kv_delete_error", key=key, error=str(e))

    async def close(self) -> None:
        await self._redis.aclose()


class InMemoryKeyValueStore:
    """Process-local store honouring TTLs lazily on read."""

    def __init__(self):
        self._data: dict[str, tuple[str, Optional[float]]] = {}

    async def get(self, key: str) -> Optional[str]:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and time.time() >= expires_at:
            del self._data[key]
            return None
        return value

    async def set(self, key: str, value: str) -> None:
        self._data[key] = (value, None)

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self._data[key] = (value, time.time() + ttl)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


async def read_json(store: KeyValueStore, key: str, default: Any) -> Any:
    """Load a JSON value, resetting to `default` when the stored text is corrupt."""
    raw = await store.get(key)
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("kv_corrupt_value_reset", key=key, raw_prefix=str(raw)[:40])
        return default
