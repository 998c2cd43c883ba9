"""Redis-Adapter - Async Redis via redis.asyncio."""

from __future__ import annotations

import asyncio
import pickle
from typing import Any

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from signalrelay.domain.exceptions import StoreError

log = structlog.get_logger(__name__)


class RedisAdapter:
    """Async Redis store with a semaphore limiting parallel operations.

    - Uses `redis.asyncio.Redis` (async-native, no to_thread needed).
    - Serialization via pickle (consistent with the Diskcache adapter).
    - Connection and command failures surface as ``StoreError`` so the
      mapping store can degrade instead of crashing the request.

    Args:
        url: Redis URL (e.g. `redis://localhost:6379/0`).
        ttl_seconds: Default TTL (0 = none).
        max_concurrent: Max parallel Redis ops.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        ttl_seconds: int = 0,
        max_concurrent: int = 50,
    ) -> None:
        self.url = url
        self.default_ttl = ttl_seconds
        self._client: Redis | None = None
        self._semaphore = asyncio.Semaphore(max_concurrent)

    async def __aenter__(self) -> RedisAdapter:
        if self._client is None:
            self._client = Redis.from_url(self.url, decode_responses=False)
            try:
                await self._client.ping()
                log.info("redis_connected", url=self.url)
            except RedisError as e:
                log.error("redis_connection_failed", url=self.url, error=str(e))
                raise StoreError(f"redis unreachable at {self.url}: {e}") from e
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            log.info("redis_closed")

    def _require(self) -> Redis:
        if self._client is None:
            raise StoreError("Redis not initialized. Use 'async with cache:'")
        return self._client

    async def get(self, key: str) -> Any | None:
        client = self._require()
        async with self._semaphore:
            try:
                raw = await client.get(key)
            except RedisError as e:
                log.error("redis_get_error", key=key, error=str(e))
                raise StoreError(f"redis get failed for {key!r}: {e}") from e
        if raw is None:
            return None
        try:
            return pickle.loads(raw)
        except pickle.PickleError as e:
            log.error("redis_unpickle_error", key=key, error=str(e))
            return None

    async def set(self, key: str, value: Any, *, ttl: int | None = None) -> None:
        client = self._require()
        expire_time = ttl if ttl is not None else self.default_ttl
        packed = pickle.dumps(value)
        async with self._semaphore:
            try:
                if expire_time:
                    await client.setex(key, expire_time, packed)
                else:
                    await client.set(key, packed)
            except RedisError as e:
                log.error("redis_set_error", key=key, error=str(e))
                raise StoreError(f"redis set failed for {key!r}: {e}") from e
        log.debug("cache_set", key=key, ttl=expire_time, size_bytes=len(packed))

    async def delete(self, key: str) -> bool:
        if self._client is None:
            return False
        async with self._semaphore:
            try:
                return await self._client.delete(key) > 0
            except RedisError as e:
                raise StoreError(f"redis delete failed for {key!r}: {e}") from e

    async def exists(self, key: str) -> bool:
        if self._client is None:
            return False
        async with self._semaphore:
            try:
                return await self._client.exists(key) > 0
            except RedisError as e:
                raise StoreError(f"redis exists failed for {key!r}: {e}") from e

    async def clear(self) -> None:
        """FLUSHDB (delete ALL keys in current DB)."""
        if self._client is None:
            return
        async with self._semaphore:
            try:
                await self._client.flushdb()
            except RedisError as e:
                raise StoreError(f"redis flush failed: {e}") from e
        log.warning("redis_flushed")
