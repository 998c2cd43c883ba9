"""Tests for RefreshScheduler."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from unittest.mock import AsyncMock

import pytest

from signalrelay.domain.entities import HostStatus, Mapping, ResolvedSignal
from signalrelay.domain.exceptions import NetworkError, NotFoundError, StoreError
from signalrelay.infrastructure.config.schema import RefreshConfig
from signalrelay.infrastructure.proxy.session_store import StreamSessionStore
from signalrelay.infrastructure.ranking.ranker import Ranker
from signalrelay.infrastructure.refresh.scheduler import RefreshScheduler

ENTRY_DOMAINS = [
    "http://play.jgdhds.com",
    "http://play.sportsteam7777.com",
    "http://play.sportsteam368.com",
]


def _signal(source_url: str) -> ResolvedSignal:
    return ResolvedSignal(
        source_url=source_url,
        media_url="https://cdn.example.com/live/3390710.m3u8?auth_key=new",
        cookies="sid=9",
        media_type="hls",
    )


def _scheduler(
    store: AsyncMock,
    resolver: AsyncMock,
    *,
    ranker: Ranker | None = None,
    sessions: StreamSessionStore | None = None,
    config: RefreshConfig | None = None,
) -> RefreshScheduler:
    ranker = ranker or Ranker()
    ranker.seed(ENTRY_DOMAINS)
    return RefreshScheduler(
        store=store,
        resolver=resolver,
        ranker=ranker,
        sessions=sessions if sessions is not None else StreamSessionStore(),
        config=config or RefreshConfig(item_delay_seconds=0, initial_delay_seconds=0),
        entry_domains=ENTRY_DOMAINS,
    )


class TestRefreshMapping:
    @pytest.mark.asyncio()
    async def test_known_domain_success(
        self, mock_store: AsyncMock, mock_resolver: AsyncMock, mapping: Mapping
    ) -> None:
        mock_resolver.resolve.return_value = _signal(mapping.play_url)
        sessions = StreamSessionStore()
        scheduler = _scheduler(mock_store, mock_resolver, sessions=sessions)

        signal = await scheduler.refresh_mapping(mapping)

        assert signal is not None
        assert mock_resolver.resolve.await_args.args[0] == mapping.play_url
        mock_store.record_success.assert_awaited_once_with("3390710", "3390710")
        mock_store.upsert.assert_not_awaited()
        stored = sessions.get("3390710")
        assert stored.play_url == signal.media_url
        assert stored.cookies == "sid=9"

    @pytest.mark.asyncio()
    async def test_fails_over_to_next_mirror_and_repoints(
        self, mock_store: AsyncMock, mock_resolver: AsyncMock, mapping: Mapping
    ) -> None:
        mirror_url = "http://play.sportsteam7777.com/play/steam3390710.html"
        mock_resolver.resolve.side_effect = [
            NetworkError("down", url=mapping.play_url, status=502),
            _signal(mirror_url),
        ]
        ranker = Ranker()
        scheduler = _scheduler(mock_store, mock_resolver, ranker=ranker)

        signal = await scheduler.refresh_mapping(mapping)

        assert signal is not None
        urls = [c.args[0] for c in mock_resolver.resolve.await_args_list]
        assert urls == [mapping.play_url, mirror_url]
        mock_store.upsert.assert_awaited_once()
        args, kwargs = mock_store.upsert.await_args
        assert args == ("3390710", "1", "3390710", "http://play.sportsteam7777.com")
        assert kwargs["source_url"] == mirror_url
        assert ranker.get("play.jgdhds.com").fail_count == 1
        assert ranker.get("play.sportsteam7777.com").success_count == 1

    @pytest.mark.asyncio()
    async def test_all_targets_fail(
        self, mock_store: AsyncMock, mock_resolver: AsyncMock, mapping: Mapping
    ) -> None:
        mock_resolver.resolve.side_effect = NotFoundError("no media")
        scheduler = _scheduler(mock_store, mock_resolver)

        assert await scheduler.refresh_mapping(mapping) is None

        assert mock_resolver.resolve.await_count == 3
        mock_store.record_failure.assert_awaited_once_with("3390710", "3390710")
        mock_store.record_success.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_inactive_hosts_are_skipped(
        self, mock_store: AsyncMock, mock_resolver: AsyncMock, mapping: Mapping
    ) -> None:
        ranker = Ranker()
        scheduler = _scheduler(mock_store, mock_resolver, ranker=ranker)
        ranker.set_status("play.jgdhds.com", HostStatus.INACTIVE)
        mock_resolver.resolve.return_value = _signal("x")

        await scheduler.refresh_mapping(mapping)

        first_url = mock_resolver.resolve.await_args_list[0].args[0]
        assert "jgdhds" not in first_url

    @pytest.mark.asyncio()
    async def test_url_mapping_has_single_target(
        self, mock_store: AsyncMock, mock_resolver: AsyncMock, mapping: Mapping
    ) -> None:
        url_mapping = replace(
            mapping,
            resolved_id="http://play.jgdhds.com/play/sm.html?id=abc",
            source_url="http://play.jgdhds.com/play/sm.html?id=abc",
        )
        mock_resolver.resolve.side_effect = NotFoundError("gone")
        scheduler = _scheduler(mock_store, mock_resolver)

        await scheduler.refresh_mapping(url_mapping)

        assert mock_resolver.resolve.await_count == 1

    @pytest.mark.asyncio()
    async def test_store_failure_does_not_abort(
        self, mock_store: AsyncMock, mock_resolver: AsyncMock, mapping: Mapping
    ) -> None:
        mock_store.record_success.side_effect = StoreError("down")
        mock_resolver.resolve.return_value = _signal(mapping.play_url)
        scheduler = _scheduler(mock_store, mock_resolver)

        assert await scheduler.refresh_mapping(mapping) is not None


class TestBatches:
    @pytest.mark.asyncio()
    async def test_refresh_match_counts(
        self, mock_store: AsyncMock, mock_resolver: AsyncMock, mapping: Mapping
    ) -> None:
        dead = replace(
            mapping,
            channel_key="2",
            resolved_id="http://dead.example/x.html",
            domain="",
            source_url="",
        )
        mock_store.list.return_value = [mapping, dead]
        mock_resolver.resolve.return_value = _signal(mapping.play_url)
        scheduler = _scheduler(mock_store, mock_resolver)

        report = await scheduler.refresh_match("3390710")

        assert report.match_key == "3390710"
        assert report.refreshed == 2
        assert report.succeeded == 1
        assert report.failed == 1

    @pytest.mark.asyncio()
    async def test_refresh_match_without_rows(
        self, mock_store: AsyncMock, mock_resolver: AsyncMock
    ) -> None:
        scheduler = _scheduler(mock_store, mock_resolver)
        report = await scheduler.refresh_match("unknown")
        assert report.refreshed == 0
        mock_resolver.resolve.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_tick_uses_configured_window(
        self, mock_store: AsyncMock, mock_resolver: AsyncMock, mapping: Mapping
    ) -> None:
        mock_store.due_for_refresh.return_value = [mapping]
        mock_resolver.resolve.return_value = _signal(mapping.play_url)
        config = RefreshConfig(
            min_age_minutes=5, max_age_minutes=120, batch_size=7, item_delay_seconds=0
        )
        scheduler = _scheduler(mock_store, mock_resolver, config=config)

        report = await scheduler._tick()

        args, kwargs = mock_store.due_for_refresh.await_args
        assert args[0].total_seconds() == 120 * 60
        assert args[1].total_seconds() == 5 * 60
        assert kwargs["limit"] == 7
        assert report.succeeded == 1
        status = scheduler.status()
        assert status["cycles"] == 1
        assert status["lastReport"]["succeeded"] == 1

    @pytest.mark.asyncio()
    async def test_tick_survives_store_outage(
        self, mock_store: AsyncMock, mock_resolver: AsyncMock
    ) -> None:
        mock_store.due_for_refresh.side_effect = StoreError("down")
        scheduler = _scheduler(mock_store, mock_resolver)
        report = await scheduler._tick()
        assert report.refreshed == 0


class TestLifecycle:
    @pytest.mark.asyncio()
    async def test_run_forever_cancels_cleanly(
        self, mock_store: AsyncMock, mock_resolver: AsyncMock
    ) -> None:
        scheduler = _scheduler(mock_store, mock_resolver)
        task = asyncio.create_task(scheduler.run_forever())
        await asyncio.sleep(0.05)
        assert scheduler.status()["running"] is True

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert scheduler.status()["running"] is False
        assert scheduler.status()["cycles"] == 1
