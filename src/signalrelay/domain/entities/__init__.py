from .mapping import (
    RESOLVED_ID_RE,
    DomainHealth,
    HostStatus,
    Mapping,
    RefreshReport,
    ResolveOutcome,
)
from .session import CookieJar
from .signal import (
    COMMENTARY_MARKERS,
    Candidate,
    DiscoveredCandidate,
    GuessedCandidate,
    MappedCandidate,
    MediaType,
    ResolvedSignal,
    SignalPayload,
    is_commentary,
)

__all__ = [
    "COMMENTARY_MARKERS",
    "RESOLVED_ID_RE",
    "Candidate",
    "CookieJar",
    "DiscoveredCandidate",
    "DomainHealth",
    "GuessedCandidate",
    "HostStatus",
    "MappedCandidate",
    "Mapping",
    "MediaType",
    "RefreshReport",
    "ResolveOutcome",
    "ResolvedSignal",
    "SignalPayload",
    "is_commentary",
]
