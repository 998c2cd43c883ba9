"""Per-host success tracking, candidate ordering and automatic host disable.

Counters live in a rolling window: once a host's window is older than
``window_hours`` its success/fail counts start over.  Status and
priority survive the window reset; an inactive host stays excluded
until an operator reactivates it.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import replace
from typing import TypeVar
from urllib.parse import urlparse

import structlog

from signalrelay.domain.entities import Candidate, DomainHealth, HostStatus

log = structlog.get_logger(__name__)

C = TypeVar("C", bound=Candidate)


def host_of(url_or_host: str) -> str:
    """Normalise a URL or bare host to ``host[:port]``."""
    if "://" in url_or_host:
        return urlparse(url_or_host).netloc
    return url_or_host.strip("/")


class Ranker:
    """Score hosts by rolling success rate and order candidates by it.

    Not thread-safe; safe for single-threaded asyncio since no method
    awaits between reading and writing a host's counters.
    """

    def __init__(
        self,
        *,
        window_hours: float = 6.0,
        prior_score: float = 0.1,
        disable_fail_threshold: int = 5,
        disable_fail_rate: float = 0.7,
        promote_success_threshold: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._window = window_hours * 3600
        self._prior = prior_score
        self._fail_threshold = disable_fail_threshold
        self._fail_rate = disable_fail_rate
        self._promote_threshold = promote_success_threshold
        self._clock = clock
        self._hosts: dict[str, DomainHealth] = {}
        self._window_started: dict[str, float] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def seed(self, domains: Iterable[str]) -> None:
        """Register entry mirrors with priorities 1..n in the given order."""
        for priority, domain in enumerate(domains, start=1):
            health = self._health(host_of(domain))
            health.priority = priority

    def reset(self, host: str | None = None) -> None:
        """Forget counters for *host* (all hosts when ``None``)."""
        if host is None:
            self._hosts.clear()
            self._window_started.clear()
            return
        key = host_of(host)
        self._hosts.pop(key, None)
        self._window_started.pop(key, None)

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def _health(self, host: str) -> DomainHealth:
        health = self._hosts.get(host)
        if health is None:
            health = DomainHealth(host=host)
            self._hosts[host] = health
            self._window_started[host] = self._clock()
        return health

    def _roll_window(self, host: str) -> None:
        started = self._window_started.get(host)
        if started is None:
            return
        now = self._clock()
        if now - started > self._window:
            health = self._hosts[host]
            health.success_count = 0
            health.fail_count = 0
            self._window_started[host] = now

    def score(self, host: str) -> float:
        """Success rate within the window; the prior for untested hosts."""
        key = host_of(host)
        if key not in self._hosts:
            return self._prior
        self._roll_window(key)
        health = self._hosts[key]
        if health.total == 0:
            return self._prior
        return health.success_count / health.total

    def is_active(self, host: str) -> bool:
        health = self._hosts.get(host_of(host))
        return health is None or health.status is HostStatus.ACTIVE

    def rank(self, candidates: Sequence[C]) -> list[C]:
        """Drop candidates on inactive hosts, order by score desc then position.

        The returned candidates carry their host score as ``prior_score``.
        """
        ranked: list[C] = []
        for candidate in candidates:
            host = host_of(candidate.url) or candidate.source_domain
            if not self.is_active(host):
                log.debug("candidate_host_inactive", host=host, url=candidate.url)
                continue
            ranked.append(replace(candidate, prior_score=self.score(host)))
        ranked.sort(key=lambda c: (-c.prior_score, c.position))
        return ranked

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def record_outcome(self, host: str, success: bool) -> DomainHealth:
        key = host_of(host)
        health = self._health(key)
        self._roll_window(key)
        health.updated_at = time.time()

        if success:
            health.success_count += 1
            if health.success_count > self._promote_threshold and health.priority > 1:
                health.priority -= 1
                log.info("host_promoted", host=key, priority=health.priority)
            return health

        health.fail_count += 1
        if (
            health.status is HostStatus.ACTIVE
            and health.fail_count > self._fail_threshold
            and health.fail_rate > self._fail_rate
        ):
            health.status = HostStatus.INACTIVE
            log.warning(
                "host_disabled",
                host=key,
                fail_count=health.fail_count,
                fail_rate=round(health.fail_rate, 3),
            )
        return health

    def set_status(self, host: str, status: HostStatus) -> DomainHealth:
        """Operator override.  Reactivation also clears the counters."""
        key = host_of(host)
        health = self._health(key)
        health.status = status
        health.updated_at = time.time()
        if status is HostStatus.ACTIVE:
            health.success_count = 0
            health.fail_count = 0
            self._window_started[key] = self._clock()
        log.info("host_status_set", host=key, status=status.value)
        return health

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def get(self, host: str) -> DomainHealth | None:
        return self._hosts.get(host_of(host))

    def hosts_by_priority(self, domains: Iterable[str]) -> list[str]:
        """Active *domains* ordered by priority, input order breaking ties."""
        indexed = [
            (i, domain)
            for i, domain in enumerate(domains)
            if self.is_active(domain)
        ]
        indexed.sort(key=lambda item: (self._priority(item[1]), item[0]))
        return [domain for _, domain in indexed]

    def _priority(self, domain: str) -> int:
        health = self._hosts.get(host_of(domain))
        return health.priority if health else 99

    def snapshot(self) -> dict[str, dict[str, object]]:
        result: dict[str, dict[str, object]] = {}
        for host in sorted(self._hosts):
            health = self._hosts[host]
            result[host] = {
                "status": health.status.value,
                "priority": health.priority,
                "successCount": health.success_count,
                "failCount": health.fail_count,
                "score": round(self.score(host), 4),
            }
        return result
