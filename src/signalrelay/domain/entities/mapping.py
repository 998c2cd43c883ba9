"""Persistent mapping rows and derived host health."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from signalrelay.domain.entities.signal import ResolvedSignal

RESOLVED_ID_RE = re.compile(r"^\d{4,8}$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Mapping:
    """Best-known resolution for a ``(match_key, channel_key)`` pair.

    ``source_url`` is the exact page that resolved last time; when it is
    empty the play page is rebuilt from ``domain`` and ``resolved_id``.
    """

    match_key: str
    channel_key: str
    resolved_id: str
    domain: str
    channel_label: str = ""
    source_url: str = ""
    success_count: int = 0
    fail_count: int = 0
    last_verified_at: datetime = field(default_factory=_utcnow)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def channel_index(self) -> int | None:
        try:
            return int(self.channel_key)
        except ValueError:
            return None

    @property
    def success_rate(self) -> float:
        # +1 keeps untested rows below rows with a single success.
        return self.success_count / (self.success_count + self.fail_count + 1)

    @property
    def play_url(self) -> str:
        if self.source_url:
            return self.source_url
        domain = self.domain.rstrip("/")
        if not domain.startswith("http"):
            domain = f"http://{domain}"
        return f"{domain}/play/steam{self.resolved_id}.html"

    def to_dict(self) -> dict[str, object]:
        return {
            "matchKey": self.match_key,
            "channelKey": self.channel_key,
            "resolvedId": self.resolved_id,
            "domain": self.domain,
            "channelLabel": self.channel_label,
            "sourceUrl": self.source_url,
            "successCount": self.success_count,
            "failCount": self.fail_count,
            "lastVerifiedAt": self.last_verified_at.isoformat(),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


class HostStatus(Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


@dataclass
class DomainHealth:
    """In-memory success/fail counters for one upstream host.

    Mutable on purpose: owned and updated exclusively by the ranker.
    """

    host: str
    success_count: int = 0
    fail_count: int = 0
    priority: int = 5
    status: HostStatus = HostStatus.ACTIVE
    updated_at: float = 0.0

    @property
    def total(self) -> int:
        return self.success_count + self.fail_count

    @property
    def fail_rate(self) -> float:
        return self.fail_count / self.total if self.total else 0.0


@dataclass(frozen=True)
class ResolveOutcome:
    """Result of one resolution request across all candidates."""

    match_key: str
    signals: list[ResolvedSignal]
    candidates_tried: int
    mapping_used: Mapping | None = None


@dataclass(frozen=True)
class RefreshReport:
    """Summary of one refresh pass (scheduled or forced)."""

    refreshed: int = 0
    succeeded: int = 0
    failed: int = 0
    match_key: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "matchKey": self.match_key,
            "refreshed": self.refreshed,
            "succeeded": self.succeeded,
            "failed": self.failed,
        }
