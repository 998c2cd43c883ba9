"""Resolve use case - race ranked candidates into playable signals.

Flow:
1. Mapping lookup (store failures degrade to "no mapping").
2. Candidate set: persisted mappings (plus channels of an explicit entry
   page).  When none of them plays, the entry mirrors and their guessed
   play pages for the stream id become a second, failover round.
3. Ranking by host success rate (inactive hosts dropped).
4. A small worker pool drains the ranked queue; each worker runs the
   full page-resolver hop chain with its own cookie jar.
5. Results are de-duplicated, labelled and returned in discovery order.
Telemetry writes run as background tasks and never delay the response.
"""

from __future__ import annotations

import asyncio
import re
from collections import deque
from collections.abc import Coroutine, Sequence
from dataclasses import replace
from typing import Any, Protocol, TypeVar
from urllib.parse import urlparse

import structlog

from signalrelay.domain.entities import (
    RESOLVED_ID_RE,
    Candidate,
    CookieJar,
    DiscoveredCandidate,
    DomainHealth,
    GuessedCandidate,
    MappedCandidate,
    Mapping,
    ResolvedSignal,
    ResolveOutcome,
    is_commentary,
)
from signalrelay.domain.exceptions import ExhaustedError, SignalError, StoreError
from signalrelay.domain.ports.mapping_store import MappingStorePort
from signalrelay.domain.ports.page_resolver import PageResolverPort

log = structlog.get_logger(__name__)

C = TypeVar("C", bound=Candidate)

_STEAM_ID_RE = re.compile(r"steam(\d+)")

# ---------------------------------------------------------------------------
# Protocols - define what this use case needs from its dependencies.
# Infrastructure components satisfy these via structural subtyping.
# ---------------------------------------------------------------------------


class _ChannelDiscovery(Protocol):
    async def discover_match(
        self, seed_url: str, *, start_position: int = 0
    ) -> list[DiscoveredCandidate]: ...

    def guess_play_pages(
        self, stream_id: str, *, start_position: int = 0
    ) -> list[GuessedCandidate]: ...


class _Ranker(Protocol):
    def rank(self, candidates: Sequence[C]) -> list[C]: ...

    def record_outcome(self, host: str, success: bool) -> DomainHealth: ...


class _SessionRecorder(Protocol):
    def set(
        self,
        stream_id: str,
        *,
        play_url: str = "",
        cookies: str = "",
        source_url: str = "",
        ttl_seconds: float | None = None,
    ) -> object: ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def stream_key(url: str) -> str:
    """Media URL without its volatile query (``auth_key`` tokens etc.)."""
    parsed = urlparse(url)
    if not parsed.netloc:
        return url.split("?", 1)[0]
    return f"{parsed.scheme}://{parsed.netloc}{parsed.path}"


def resolved_id_for(url: str) -> str:
    """Numeric stream id embedded in *url*, else the URL itself."""
    m = _STEAM_ID_RE.search(url)
    if m and RESOLVED_ID_RE.match(m.group(1)):
        return m.group(1)
    return url


def origin_of(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def fallback_stream_id(match_key: str, rows: Sequence[Mapping]) -> str | None:
    """Numeric stream id to guess play pages from, if one is known."""
    if match_key.isdigit() and RESOLVED_ID_RE.match(match_key):
        return match_key
    for row in rows:
        if row.resolved_id.isdigit():
            return row.resolved_id
    return None


class _CandidatePool:
    """Ordered, de-duplicated candidates with the channel slot each fills."""

    def __init__(self) -> None:
        self.candidates: list[Candidate] = []
        self.channel_keys: dict[str, str] = {}
        self._next_slot = 1

    def __len__(self) -> int:
        return len(self.candidates)

    def add(self, candidate: Candidate, *, channel_key: str | None = None) -> None:
        if candidate.url in self.channel_keys:
            return
        if is_commentary(candidate.label) or is_commentary(candidate.url):
            log.debug("candidate_excluded", label=candidate.label, url=candidate.url)
            return
        if channel_key is None:
            channel_key = str(self._next_slot)
            self._next_slot += 1
        elif channel_key.isdigit():
            # New channels never reuse a stored slot.
            self._next_slot = max(self._next_slot, int(channel_key) + 1)
        self.candidates.append(replace(candidate, position=len(self.candidates)))
        self.channel_keys[candidate.url] = channel_key


class SignalCollector:
    """Accepts worker results, dropping duplicates and disguised commentary.

    No method awaits, so concurrent workers on one event loop never
    interleave inside a check-then-append sequence.
    """

    def __init__(self) -> None:
        self._accepted: list[tuple[int, ResolvedSignal]] = []
        self._keys: set[str] = set()
        self._label_usage: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._accepted)

    def accept(self, candidate: Candidate, signal: ResolvedSignal) -> ResolvedSignal | None:
        key = stream_key(signal.media_url)
        if self._is_disguised_commentary(candidate.label, key):
            log.info("signal_dropped_commentary", label=candidate.label, url=key[:160])
            return None
        if key in self._keys:
            log.debug("signal_dropped_duplicate", label=candidate.label, url=key[:160])
            return None

        base = (candidate.label or signal.label or f"线路{candidate.position + 1}").strip()
        used = self._label_usage.get(base, 0)
        self._label_usage[base] = used + 1
        label = base if used == 0 else f"{base}-{used + 1}"

        labelled = replace(signal, label=label)
        self._keys.add(key)
        self._accepted.append((candidate.position, labelled))
        return labelled

    def _is_disguised_commentary(self, label: str, key: str) -> bool:
        # A second "云直播" line pointing at an existing stream is the
        # commentary variant of that stream.
        if "云直播" not in label:
            return False
        return any(
            ("云直播" in s.label or "线路" in s.label) and stream_key(s.media_url) == key
            for _, s in self._accepted
        )

    def ordered(self) -> list[ResolvedSignal]:
        return [s for _, s in sorted(self._accepted, key=lambda item: item[0])]


# ---------------------------------------------------------------------------
# Use case
# ---------------------------------------------------------------------------


class ResolveMatchUseCase:
    """Resolve a match key into every distinct playable signal."""

    def __init__(
        self,
        *,
        store: MappingStorePort,
        resolver: PageResolverPort,
        discovery: _ChannelDiscovery,
        ranker: _Ranker,
        sessions: _SessionRecorder | None = None,
        worker_pool_size: int = 2,
        resolve_timeout_seconds: float = 45.0,
        default_referer: str = "",
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._discovery = discovery
        self._ranker = ranker
        self._sessions = sessions
        self._pool_size = max(1, worker_pool_size)
        self._timeout = resolve_timeout_seconds
        self._default_referer = default_referer
        self._background: set[asyncio.Task[None]] = set()

    async def execute(
        self,
        match_key: str,
        *,
        preferred_channel_index: int | None = None,
        entry_url: str | None = None,
    ) -> ResolveOutcome:
        """Resolve *match_key*.

        Stored mappings (plus channels discovered from *entry_url*) are
        tried first.  When none of them yields a signal, the entry
        mirrors and their guessed play pages are tried next.

        Raises:
            ExhaustedError: no candidate produced a playable signal.
        """
        mapping_used, rows = await self._lookup(match_key, preferred_channel_index)
        pool = _CandidatePool()
        self._add_mapped(pool, mapping_used, rows)
        if entry_url:
            await self._add_discovered(pool, entry_url)

        collector = SignalCollector()
        attempted: set[str] = set()
        deadline = asyncio.get_running_loop().time() + self._timeout
        referer = entry_url or self._default_referer

        tried = await self._run_phase(
            match_key, pool, collector, attempted, deadline=deadline, referer=referer
        )
        if not collector:
            stream_id = fallback_stream_id(match_key, rows)
            if stream_id is not None:
                await self._add_fallbacks(pool, stream_id, seeded=bool(entry_url))
                tried += await self._run_phase(
                    match_key,
                    pool,
                    collector,
                    attempted,
                    deadline=deadline,
                    referer=referer,
                )

        signals = collector.ordered()
        if not signals:
            if not tried:
                raise ExhaustedError(f"no candidates for {match_key}", attempts=0)
            raise ExhaustedError(
                f"all {tried} candidates failed for {match_key}", attempts=tried
            )

        if self._sessions is not None:
            top = signals[0]
            self._sessions.set(match_key, cookies=top.cookies, source_url=top.source_url)

        log.info(
            "resolve_finished",
            match_key=match_key,
            signals=len(signals),
            candidates_tried=tried,
            mapping=mapping_used.channel_key if mapping_used else None,
        )
        return ResolveOutcome(
            match_key=match_key,
            signals=signals,
            candidates_tried=tried,
            mapping_used=mapping_used,
        )

    # -- candidates ----------------------------------------------------------

    async def _lookup(
        self, match_key: str, channel_index: int | None
    ) -> tuple[Mapping | None, list[Mapping]]:
        try:
            mapping = await self._store.get(match_key, channel_index)
            rows = await self._store.list(match_key)
        except StoreError as e:
            log.warning("mapping_lookup_degraded", match_key=match_key, error=str(e))
            return None, []
        return mapping, rows

    def _add_mapped(
        self, pool: _CandidatePool, mapping_used: Mapping | None, rows: list[Mapping]
    ) -> None:
        ordered_rows = ([mapping_used] if mapping_used else []) + [
            r for r in rows if mapping_used is None or r.channel_key != mapping_used.channel_key
        ]
        for row in ordered_rows:
            pool.add(
                MappedCandidate(
                    label=row.channel_label,
                    url=row.play_url,
                    source_domain=urlparse(row.play_url).netloc,
                    channel_key=row.channel_key,
                    resolved_id=row.resolved_id,
                ),
                channel_key=row.channel_key,
            )

    async def _add_discovered(self, pool: _CandidatePool, seed_url: str) -> None:
        discovered = await self._discovery.discover_match(
            seed_url, start_position=len(pool)
        )
        for candidate in discovered:
            pool.add(candidate)

    async def _add_fallbacks(
        self, pool: _CandidatePool, stream_id: str, *, seeded: bool
    ) -> None:
        guesses = self._discovery.guess_play_pages(
            stream_id, start_position=len(pool)
        )
        if not seeded and guesses:
            await self._add_discovered(pool, guesses[0].url)
        for guess in guesses:
            pool.add(guess)

    # -- worker pool ---------------------------------------------------------

    async def _run_phase(
        self,
        match_key: str,
        pool: _CandidatePool,
        collector: SignalCollector,
        attempted: set[str],
        *,
        deadline: float,
        referer: str,
    ) -> int:
        pending = [c for c in pool.candidates if c.url not in attempted]
        ranked = self._ranker.rank(pending)
        log.info(
            "resolve_phase_started",
            match_key=match_key,
            candidates=len(pending),
            ranked=len(ranked),
        )
        if not ranked:
            return 0
        before = len(attempted)
        await self._drain(
            match_key,
            ranked,
            collector,
            attempted,
            channel_keys=pool.channel_keys,
            referer=referer,
            timeout=max(0.0, deadline - asyncio.get_running_loop().time()),
        )
        return len(attempted) - before

    async def _drain(
        self,
        match_key: str,
        ranked: list[Candidate],
        collector: SignalCollector,
        attempted: set[str],
        *,
        channel_keys: dict[str, str],
        referer: str,
        timeout: float,
    ) -> None:
        queue: deque[Candidate] = deque(ranked)

        async def worker(worker_id: int) -> None:
            while queue:
                candidate = queue.popleft()
                if candidate.url in attempted:
                    continue
                attempted.add(candidate.url)
                await self._attempt(
                    match_key,
                    candidate,
                    collector,
                    channel_key=channel_keys.get(candidate.url, str(candidate.position + 1)),
                    referer=referer,
                    worker_id=worker_id,
                )

        workers = min(self._pool_size, len(queue))
        try:
            await asyncio.wait_for(
                asyncio.gather(*(worker(i) for i in range(workers))),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            log.warning(
                "resolve_timeout",
                match_key=match_key,
                timeout_seconds=self._timeout,
                accepted=len(collector),
                pending=len(queue),
            )

    async def _attempt(
        self,
        match_key: str,
        candidate: Candidate,
        collector: SignalCollector,
        *,
        channel_key: str,
        referer: str,
        worker_id: int,
    ) -> None:
        host = urlparse(candidate.url).netloc or candidate.source_domain
        try:
            signal = await self._resolver.resolve(
                candidate.url, referer=referer, jar=CookieJar(), label=candidate.label
            )
        except SignalError as e:
            log.warning(
                "candidate_failed",
                match_key=match_key,
                kind=candidate.kind,
                url=candidate.url,
                error_type=type(e).__name__,
                error=str(e),
                worker=worker_id,
            )
            self._ranker.record_outcome(host, False)
            if isinstance(candidate, MappedCandidate):
                self._spawn(self._record_failure(match_key, candidate.resolved_id))
            return

        self._ranker.record_outcome(host, True)
        accepted = collector.accept(candidate, signal)
        if accepted is None:
            return
        self._spawn(
            self._record_success(match_key, channel_key, candidate, label=accepted.label)
        )

    # -- telemetry -----------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain_background(self) -> None:
        """Wait for pending telemetry writes (shutdown and tests)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _record_success(
        self, match_key: str, channel_key: str, candidate: Candidate, *, label: str
    ) -> None:
        resolved_id = (
            candidate.resolved_id
            if isinstance(candidate, MappedCandidate) and candidate.resolved_id
            else resolved_id_for(candidate.url)
        )
        try:
            await self._store.upsert(
                match_key,
                channel_key,
                resolved_id,
                origin_of(candidate.url),
                channel_label=label,
                source_url=candidate.url,
            )
            await self._store.record_success(match_key, resolved_id)
        except (StoreError, ValueError) as e:
            log.warning(
                "mapping_telemetry_failed",
                match_key=match_key,
                channel_key=channel_key,
                error=str(e),
            )

    async def _record_failure(self, match_key: str, resolved_id: str) -> None:
        try:
            await self._store.record_failure(match_key, resolved_id)
        except StoreError as e:
            log.warning("mapping_telemetry_failed", match_key=match_key, error=str(e))
