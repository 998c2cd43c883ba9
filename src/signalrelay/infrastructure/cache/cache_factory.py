"""Cache factory - builds the key-value adapter selected in config."""

from __future__ import annotations

from typing import Literal

import structlog

from signalrelay.domain.ports.cache import CachePort
from signalrelay.infrastructure.cache.diskcache_adapter import DiskcacheAdapter
from signalrelay.infrastructure.cache.redis_adapter import RedisAdapter

log = structlog.get_logger(__name__)

CacheBackend = Literal["diskcache", "redis"]


def create_cache(
    backend: CacheBackend = "diskcache",
    *,
    directory: str = "./.cache/signalrelay",
    redis_url: str = "redis://localhost:6379/0",
    ttl_seconds: int = 0,
    max_concurrent: int = 10,
) -> CachePort:
    """Create the cache adapter for *backend*.

    Redis tolerates far more parallel operations than SQLite, so its
    semaphore limit is at least 50 regardless of *max_concurrent*.

    Raises:
        ValueError: if `backend` is unknown.
    """
    if backend == "diskcache":
        log.info(
            "cache_factory_create",
            backend=backend,
            directory=directory,
            max_concurrent=max_concurrent,
        )
        return DiskcacheAdapter(
            directory=directory,
            ttl_seconds=ttl_seconds,
            max_concurrent=max_concurrent,
        )
    if backend == "redis":
        limit = max(max_concurrent, 50)
        log.info("cache_factory_create", backend=backend, url=redis_url, max_concurrent=limit)
        return RedisAdapter(url=redis_url, ttl_seconds=ttl_seconds, max_concurrent=limit)
    raise ValueError(
        f"Unknown cache backend: {backend!r}. Must be 'diskcache' or 'redis'."
    )
