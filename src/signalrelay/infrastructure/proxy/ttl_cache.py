"""In-memory TTL + LRU cache for proxied manifests and segments."""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Generic, TypeVar

V = TypeVar("V")


class _CacheEntry(Generic[V]):
    """Time-bounded cache entry."""

    __slots__ = ("value", "size", "expires_at")

    def __init__(self, value: V, size: int, expires_at: float) -> None:
        self.value = value
        self.size = size
        self.expires_at = expires_at


class TtlLruCache(Generic[V]):
    """Bounded cache evicting by TTL, entry count and total size.

    Reads and writes are plain dict operations with no awaits, so the
    cache is safe to share between concurrent asyncio requests.
    Iteration only happens while evicting, never on the read path.

    Args:
        ttl_seconds: Entry lifetime; ``0`` disables the cache entirely.
        max_entries: Maximum number of entries (LRU beyond that).
        max_bytes: Maximum summed ``size`` of all entries (``0`` = unbounded).
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        *,
        ttl_seconds: float,
        max_entries: int,
        max_bytes: int = 0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._max_bytes = max_bytes
        self._clock = clock
        self._entries: OrderedDict[str, _CacheEntry[V]] = OrderedDict()
        self._bytes = 0

    @property
    def enabled(self) -> bool:
        return self._ttl > 0 and self._max_entries > 0

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def total_bytes(self) -> int:
        return self._bytes

    def get(self, key: str) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            self._remove(key)
            return None
        self._entries.move_to_end(key)
        return entry.value

    def set(self, key: str, value: V, *, size: int = 1) -> None:
        if not self.enabled:
            return
        if self._max_bytes and size > self._max_bytes:
            return
        if key in self._entries:
            self._remove(key)
        self._entries[key] = _CacheEntry(value, size, self._clock() + self._ttl)
        self._bytes += size
        self._evict()

    def clear(self) -> None:
        self._entries.clear()
        self._bytes = 0

    def _remove(self, key: str) -> None:
        entry = self._entries.pop(key)
        self._bytes -= entry.size

    def _evict(self) -> None:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now >= e.expires_at]
        for key in expired:
            self._remove(key)
        while len(self._entries) > self._max_entries or (
            self._max_bytes and self._bytes > self._max_bytes
        ):
            oldest = next(iter(self._entries))
            self._remove(oldest)
