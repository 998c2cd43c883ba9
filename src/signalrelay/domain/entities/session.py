"""Per-resolution cookie state threaded through the hop chain."""

from __future__ import annotations

from collections.abc import Iterable


class CookieJar:
    """Name/value cookie store for a single resolution.

    Each resolution gets its own jar; it is passed explicitly from hop to
    hop and never shared between candidates.  Attributes such as
    ``Path`` or ``Expires`` are ignored, only the leading pair counts.
    """

    def __init__(self, initial: str = "") -> None:
        self._cookies: dict[str, str] = {}
        if initial:
            self.load_header(initial)

    def __len__(self) -> int:
        return len(self._cookies)

    def __bool__(self) -> bool:
        return bool(self._cookies)

    def get(self, name: str) -> str | None:
        return self._cookies.get(name)

    def store(self, set_cookie_headers: Iterable[str]) -> None:
        """Absorb ``Set-Cookie`` header values; later values win."""
        for raw in set_cookie_headers:
            if not raw:
                continue
            pair = raw.split(";", 1)[0]
            name, sep, value = pair.partition("=")
            name = name.strip()
            if not name or not sep:
                continue
            self._cookies[name] = value.strip()

    def load_header(self, header: str) -> None:
        """Absorb a ``Cookie`` request header (``a=1; b=2``)."""
        for part in header.split(";"):
            name, sep, value = part.partition("=")
            name = name.strip()
            if name and sep:
                self._cookies[name] = value.strip()

    def header(self) -> str:
        """Render the jar as a ``Cookie`` header value ('' when empty)."""
        return "; ".join(f"{k}={v}" for k, v in self._cookies.items())
