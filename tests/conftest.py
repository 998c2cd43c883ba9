"""Shared test fixtures for SignalRelay test suite."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from signalrelay.domain.entities import Mapping, ResolvedSignal

# ---------------------------------------------------------------------------
# Domain entity fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def mapping() -> Mapping:
    """Mapping row with known timestamps for testing."""
    now = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
    return Mapping(
        match_key="3390710",
        channel_key="1",
        resolved_id="3390710",
        domain="http://play.jgdhds.com",
        channel_label="高清直播",
        source_url="http://play.jgdhds.com/play/steam3390710.html",
        last_verified_at=now,
        created_at=now,
        updated_at=now,
    )


@pytest.fixture()
def resolved_signal() -> ResolvedSignal:
    return ResolvedSignal(
        source_url="http://play.jgdhds.com/play/steam3390710.html",
        media_url="https://cdn.example.com/live/3390710.m3u8?auth_key=abc",
        cookies="sid=1",
        media_type="hls",
        label="高清直播",
        hops=2,
    )


# ---------------------------------------------------------------------------
# Mock port fixtures
# ---------------------------------------------------------------------------


class InMemoryCache:
    """Dict-backed CachePort; TTLs are recorded but never expire."""

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}
        self.ttls: dict[str, int | None] = {}

    async def get(self, key: str) -> Any:
        return self.data.get(key)

    async def set(self, key: str, value: Any, *, ttl: int | None = None) -> None:
        self.data[key] = value
        self.ttls[key] = ttl

    async def delete(self, key: str) -> bool:
        self.ttls.pop(key, None)
        return self.data.pop(key, None) is not None

    async def exists(self, key: str) -> bool:
        return key in self.data

    async def clear(self) -> None:
        self.data.clear()
        self.ttls.clear()

    async def aclose(self) -> None:
        return None

    async def __aenter__(self) -> InMemoryCache:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        return None


@pytest.fixture()
def memory_cache() -> InMemoryCache:
    return InMemoryCache()


@pytest.fixture()
def mock_cache() -> AsyncMock:
    """Mock CachePort."""
    cache = AsyncMock()
    cache.get = AsyncMock(return_value=None)
    cache.set = AsyncMock()
    cache.delete = AsyncMock(return_value=True)
    cache.exists = AsyncMock(return_value=False)
    cache.clear = AsyncMock()
    cache.aclose = AsyncMock()
    return cache


@pytest.fixture()
def mock_store() -> AsyncMock:
    """Mock MappingStorePort with no stored mappings."""
    store = AsyncMock()
    store.get = AsyncMock(return_value=None)
    store.list = AsyncMock(return_value=[])
    store.upsert = AsyncMock()
    store.record_success = AsyncMock()
    store.record_failure = AsyncMock()
    store.due_for_refresh = AsyncMock(return_value=[])
    store.stats = AsyncMock(
        return_value={"matches": 0, "mappings": 0, "successTotal": 0, "failTotal": 0}
    )
    return store


@pytest.fixture()
def mock_resolver() -> AsyncMock:
    """Mock PageResolverPort."""
    resolver = AsyncMock()
    resolver.resolve = AsyncMock()
    return resolver


@pytest.fixture()
def mock_discovery() -> AsyncMock:
    discovery = AsyncMock()
    discovery.discover_match = AsyncMock(return_value=[])
    discovery.guess_play_pages = MagicMock(return_value=[])
    return discovery


@pytest.fixture()
def mock_sessions() -> MagicMock:
    sessions = MagicMock()
    sessions.get.return_value = None
    return sessions
