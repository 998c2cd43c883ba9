"""Port for the multi-hop page resolver."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from signalrelay.domain.entities import CookieJar, ResolvedSignal


@runtime_checkable
class PageResolverPort(Protocol):
    """Walks an entry page down to a playable media URL.

    Raises ``NetworkError``, ``NotFoundError``, ``FilteredError`` or
    ``ExhaustedError``; never returns ``None``.
    """

    async def resolve(
        self,
        url: str,
        *,
        referer: str | None = None,
        jar: CookieJar | None = None,
        label: str = "",
    ) -> ResolvedSignal: ...
