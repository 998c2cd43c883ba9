"""CacheMappingStore on a real diskcache backend."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from signalrelay.infrastructure.cache.diskcache_adapter import DiskcacheAdapter
from signalrelay.infrastructure.persistence.mapping_store import CacheMappingStore

pytestmark = pytest.mark.integration

DOMAIN = "http://play.jgdhds.com"


class TestMappingStoreOnDisk:
    async def test_rows_survive_reopen(self, tmp_path: Path) -> None:
        directory = tmp_path / "cache"
        async with DiskcacheAdapter(directory=directory) as cache:
            store = CacheMappingStore(cache)
            await store.upsert("3390710", "1", "3390710", DOMAIN, channel_label="直播①")
            await store.record_success("3390710", "3390710")

        async with DiskcacheAdapter(directory=directory) as cache:
            rows = await CacheMappingStore(cache).list("3390710")

        assert len(rows) == 1
        assert rows[0].success_count == 1
        assert rows[0].channel_label == "直播①"

    async def test_concurrent_counters_are_not_lost(
        self, mapping_store: CacheMappingStore
    ) -> None:
        await mapping_store.upsert("m1", "1", "1111", DOMAIN)

        await asyncio.gather(
            *(mapping_store.record_success("m1", "1111") for _ in range(10)),
            *(mapping_store.record_failure("m1", "1111") for _ in range(5)),
        )

        row = await mapping_store.get("m1", 1)
        assert row.success_count == 10
        assert row.fail_count == 5

    async def test_stats_across_matches(self, mapping_store: CacheMappingStore) -> None:
        await mapping_store.upsert("m1", "1", "1111", DOMAIN)
        await mapping_store.upsert("m1", "2", "2222", DOMAIN)
        await mapping_store.upsert("m2", "1", "3333", DOMAIN)

        stats = await mapping_store.stats()

        assert stats["matches"] == 2
        assert stats["mappings"] == 3
