"""Forced refresh of one match, bypassing the scheduler interval."""

from __future__ import annotations

from typing import Protocol

import structlog

from signalrelay.domain.entities import RefreshReport, ResolveOutcome
from signalrelay.domain.exceptions import ExhaustedError

log = structlog.get_logger(__name__)


class _MappingRefresher(Protocol):
    async def refresh_match(self, match_key: str) -> RefreshReport: ...


class _Resolver(Protocol):
    async def execute(
        self,
        match_key: str,
        *,
        preferred_channel_index: int | None = None,
        entry_url: str | None = None,
    ) -> ResolveOutcome: ...


class RefreshMatchUseCase:
    """Re-resolve every stored mapping of a match right now.

    A match without stored mappings gets a full live resolution instead,
    which persists whatever it finds.
    """

    def __init__(self, *, refresher: _MappingRefresher, resolver: _Resolver) -> None:
        self._refresher = refresher
        self._resolver = resolver

    async def execute(
        self, match_key: str, *, entry_url: str | None = None
    ) -> RefreshReport:
        report = await self._refresher.refresh_match(match_key)
        if report.refreshed:
            log.info("match_refreshed", **report.to_dict())
            return report

        log.info("match_refresh_live_resolve", match_key=match_key)
        try:
            await self._resolver.execute(match_key, entry_url=entry_url)
        except ExhaustedError as e:
            log.warning("match_refresh_failed", match_key=match_key, attempts=e.attempts)
            return RefreshReport(refreshed=1, succeeded=0, failed=1, match_key=match_key)
        return RefreshReport(refreshed=1, succeeded=1, failed=0, match_key=match_key)
