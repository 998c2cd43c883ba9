"""Domain entities for candidate resolution.

Pure value objects without framework dependencies or I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, Union

MediaType = Literal["hls", "flv", "mp4", "unknown"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SignalPayload:
    """Plaintext recovered from an embedded cipher marker."""

    url: str
    ts: int | str | None = None


@dataclass(frozen=True)
class _CandidateBase:
    label: str
    url: str
    source_domain: str
    position: int = 0
    prior_score: float = 0.0


@dataclass(frozen=True)
class MappedCandidate(_CandidateBase):
    """Candidate recalled from a persisted mapping row."""

    channel_key: str = ""
    resolved_id: str = ""

    @property
    def kind(self) -> str:
        return "mapped"


@dataclass(frozen=True)
class DiscoveredCandidate(_CandidateBase):
    """Candidate found as a channel button on an entry page."""

    entry_url: str = ""

    @property
    def kind(self) -> str:
        return "discovered"


@dataclass(frozen=True)
class GuessedCandidate(_CandidateBase):
    """Candidate synthesized from the match key and a known entry domain."""

    @property
    def kind(self) -> str:
        return "guessed"


Candidate = Union[MappedCandidate, DiscoveredCandidate, GuessedCandidate]


@dataclass(frozen=True)
class ResolvedSignal:
    """A playable media URL plus the session needed to fetch it."""

    source_url: str
    media_url: str
    cookies: str = ""
    media_type: MediaType = "unknown"
    quality_label: str = "标准"
    label: str = ""
    hops: int = 0
    resolved_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, object]:
        return {
            "label": self.label,
            "sourceUrl": self.source_url,
            "mediaUrl": self.media_url,
            "mediaType": self.media_type,
            "quality": self.quality_label,
            "cookies": self.cookies,
            "resolvedAt": self.resolved_at.isoformat(),
        }


COMMENTARY_MARKERS: tuple[str, ...] = ("主播", "解说", "commentator", "host")


def is_commentary(text: str | None) -> bool:
    """True when *text* (label, button text or URL) marks a commentary track."""
    if not text:
        return False
    lowered = text.lower()
    return any(marker in lowered for marker in COMMENTARY_MARKERS)
