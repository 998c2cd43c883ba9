"""Background mapping refresh - keeps short-lived media tokens warm."""

from __future__ import annotations

import asyncio
import time
from datetime import timedelta
from urllib.parse import urlparse

import structlog

from signalrelay.domain.entities import (
    CookieJar,
    Mapping,
    RefreshReport,
    ResolvedSignal,
)
from signalrelay.domain.exceptions import SignalError, StoreError
from signalrelay.domain.ports.mapping_store import MappingStorePort
from signalrelay.domain.ports.page_resolver import PageResolverPort
from signalrelay.infrastructure.config.schema import RefreshConfig
from signalrelay.infrastructure.proxy.session_store import StreamSessionStore
from signalrelay.infrastructure.ranking.ranker import Ranker, host_of

log = structlog.get_logger(__name__)


class RefreshScheduler:
    """Re-resolves mappings whose last verification sits inside the refresh window.

    Call :meth:`run_forever` as an asyncio task during app lifespan.
    Cancellation is clean: the task exits at its current await.
    """

    def __init__(
        self,
        *,
        store: MappingStorePort,
        resolver: PageResolverPort,
        ranker: Ranker,
        sessions: StreamSessionStore,
        config: RefreshConfig,
        entry_domains: list[str],
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._ranker = ranker
        self._sessions = sessions
        self._config = config
        self._entry_domains = list(entry_domains)
        self._cycles = 0
        self._last_run_at: float | None = None
        self._last_report: RefreshReport | None = None
        self._running = False

    async def run_forever(self) -> None:
        """Main loop: refresh due mappings, sleep, repeat."""
        log.info(
            "refresh_scheduler_started",
            interval_minutes=self._config.interval_minutes,
            batch_size=self._config.batch_size,
        )
        self._running = True
        try:
            await asyncio.sleep(self._config.initial_delay_seconds)
            while True:
                try:
                    await self._tick()
                except Exception:
                    log.error("refresh_scheduler_tick_error", exc_info=True)
                await asyncio.sleep(self._config.interval_minutes * 60)
        except asyncio.CancelledError:
            log.info("refresh_scheduler_cancelled")
            raise
        finally:
            self._running = False

    async def _tick(self) -> RefreshReport:
        try:
            due = await self._store.due_for_refresh(
                timedelta(minutes=self._config.max_age_minutes),
                timedelta(minutes=self._config.min_age_minutes),
                limit=self._config.batch_size,
            )
        except StoreError as e:
            log.warning("refresh_due_query_failed", error=str(e))
            due = []
        report = await self.refresh_batch(due, delay=self._config.item_delay_seconds)
        self._cycles += 1
        self._last_run_at = time.time()
        self._last_report = report
        log.info("refresh_cycle_done", cycle=self._cycles, **report.to_dict())
        return report

    async def refresh_match(self, match_key: str) -> RefreshReport:
        """Re-resolve every mapping of *match_key* right now."""
        try:
            rows = await self._store.list(match_key)
        except StoreError as e:
            log.warning("refresh_list_failed", match_key=match_key, error=str(e))
            rows = []
        report = await self.refresh_batch(rows)
        return RefreshReport(
            refreshed=report.refreshed,
            succeeded=report.succeeded,
            failed=report.failed,
            match_key=match_key,
        )

    async def refresh_batch(
        self, mappings: list[Mapping], *, delay: float = 0.0
    ) -> RefreshReport:
        succeeded = 0
        failed = 0
        for i, mapping in enumerate(mappings):
            if i and delay:
                await asyncio.sleep(delay)
            if await self.refresh_mapping(mapping) is not None:
                succeeded += 1
            else:
                failed += 1
        return RefreshReport(
            refreshed=len(mappings), succeeded=succeeded, failed=failed
        )

    async def refresh_mapping(self, mapping: Mapping) -> ResolvedSignal | None:
        """Resolve one mapping, last-known domain first, then other mirrors."""
        for url in self._targets(mapping):
            host = host_of(url)
            try:
                signal = await self._resolver.resolve(
                    url, jar=CookieJar(), label=mapping.channel_label
                )
            except SignalError as e:
                log.warning(
                    "refresh_candidate_failed",
                    match_key=mapping.match_key,
                    url=url,
                    error=str(e),
                )
                self._ranker.record_outcome(host, False)
                continue

            self._ranker.record_outcome(host, True)
            await self._after_success(mapping, url, signal)
            return signal

        await self._safe_record(mapping, success=False)
        return None

    def _targets(self, mapping: Mapping) -> list[str]:
        targets: list[str] = []
        if mapping.domain or mapping.source_url:
            targets.append(mapping.play_url)
        if mapping.resolved_id.isdigit():
            known = host_of(mapping.domain) if mapping.domain else ""
            for domain in self._ranker.hosts_by_priority(self._entry_domains):
                if host_of(domain) == known:
                    continue
                url = f"{domain.rstrip('/')}/play/steam{mapping.resolved_id}.html"
                if url not in targets:
                    targets.append(url)
        return [u for u in targets if self._ranker.is_active(host_of(u))]

    async def _after_success(
        self, mapping: Mapping, url: str, signal: ResolvedSignal
    ) -> None:
        parsed = urlparse(url)
        domain = f"{parsed.scheme}://{parsed.netloc}"
        try:
            if url != mapping.play_url:
                await self._store.upsert(
                    mapping.match_key,
                    mapping.channel_key,
                    mapping.resolved_id,
                    domain,
                    channel_label=mapping.channel_label,
                    source_url=url,
                )
        except (StoreError, ValueError) as e:
            log.warning("refresh_upsert_failed", match_key=mapping.match_key, error=str(e))
        await self._safe_record(mapping, success=True)
        self._sessions.set(
            mapping.match_key,
            play_url=signal.media_url,
            cookies=signal.cookies,
            source_url=signal.source_url,
        )
        log.info(
            "mapping_refreshed",
            match_key=mapping.match_key,
            channel_key=mapping.channel_key,
            media_url=signal.media_url[:160],
        )

    async def _safe_record(self, mapping: Mapping, *, success: bool) -> None:
        try:
            if success:
                await self._store.record_success(mapping.match_key, mapping.resolved_id)
            else:
                await self._store.record_failure(mapping.match_key, mapping.resolved_id)
        except StoreError as e:
            log.warning(
                "refresh_record_failed",
                match_key=mapping.match_key,
                success=success,
                error=str(e),
            )

    def status(self) -> dict[str, object]:
        return {
            "enabled": self._config.enabled,
            "running": self._running,
            "cycles": self._cycles,
            "intervalMinutes": self._config.interval_minutes,
            "lastRunAt": self._last_run_at,
            "lastReport": self._last_report.to_dict() if self._last_report else None,
        }
