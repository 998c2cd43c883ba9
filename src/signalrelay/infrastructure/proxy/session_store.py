"""Per-stream playback sessions (play URL, cookies, referer page)."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog

log = structlog.get_logger(__name__)

MIN_SESSION_TTL_SECONDS = 60


@dataclass(frozen=True)
class StreamSession:
    play_url: str = ""
    cookies: str = ""
    source_url: str = ""
    updated_at: float = 0.0
    expires_at: float = 0.0


class StreamSessionStore:
    """Short-lived memory of the last good resolution per stream id.

    Entries expire after ``ttl_seconds`` (never less than a minute) and
    are pruned lazily on access and on every write.
    """

    def __init__(
        self,
        ttl_seconds: float = 900,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = max(float(ttl_seconds), MIN_SESSION_TTL_SECONDS)
        self._clock = clock
        self._sessions: dict[str, StreamSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def set(
        self,
        stream_id: str,
        *,
        play_url: str = "",
        cookies: str = "",
        source_url: str = "",
        ttl_seconds: float | None = None,
    ) -> StreamSession | None:
        if not stream_id:
            return None
        now = self._clock()
        ttl = max(float(ttl_seconds), MIN_SESSION_TTL_SECONDS) if ttl_seconds else self._ttl
        session = StreamSession(
            play_url=play_url,
            cookies=cookies,
            source_url=source_url,
            updated_at=now,
            expires_at=now + ttl,
        )
        self._sessions[stream_id] = session
        self.prune()
        log.debug("stream_session_stored", stream_id=stream_id, has_cookies=bool(cookies))
        return session

    def get(self, stream_id: str | None) -> StreamSession | None:
        if not stream_id:
            return None
        session = self._sessions.get(stream_id)
        if session is None:
            return None
        if session.expires_at < self._clock():
            del self._sessions[stream_id]
            return None
        return session

    def prune(self) -> int:
        now = self._clock()
        stale = [k for k, s in self._sessions.items() if s.expires_at < now]
        for key in stale:
            del self._sessions[key]
        return len(stale)
