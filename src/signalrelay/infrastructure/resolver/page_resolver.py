"""Multi-hop page resolver - walks player pages down to a media URL.

Each hop fetches one document and runs two strategy chains on it
(see ``extract``): media strategies first, frame strategies second.
Cookies returned by any hop are carried in the caller's ``CookieJar``
and sent on every later hop of the same resolution.
"""

from __future__ import annotations

import time

import httpx
import structlog

from signalrelay.domain.entities import CookieJar, ResolvedSignal
from signalrelay.domain.exceptions import (
    ExhaustedError,
    FilteredError,
    NotFoundError,
)
from signalrelay.infrastructure.config.defaults import DESKTOP_USER_AGENT
from signalrelay.infrastructure.resolver.extract import (
    FRAME_STRATEGIES,
    MEDIA_STRATEGIES,
    ExtractContext,
    Verdict,
    classify_media_url,
    detect_media_type,
    detect_quality,
    first_match,
    is_ad_url,
    normalize_url,
)
from signalrelay.infrastructure.resolver.fetch import fetch_document

log = structlog.get_logger(__name__)


class PageResolver:
    """Resolve an entry/player URL into a ``ResolvedSignal``.

    Args:
        http_client: Shared ``httpx.AsyncClient``. It must not persist
            cookies itself; the per-resolution jar is the only cookie state.
        max_hops: Upper bound on documents fetched per resolution.
        user_agent: ``User-Agent`` sent on every hop.
        default_referer: Referer for the first hop when the caller has none.
        timeout_seconds: Per-fetch timeout.
        context: Cipher key and stream host for the extraction strategies.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        max_hops: int = 4,
        user_agent: str = DESKTOP_USER_AGENT,
        default_referer: str = "",
        timeout_seconds: float = 8.0,
        context: ExtractContext | None = None,
    ) -> None:
        if max_hops < 1:
            raise ValueError("max_hops must be >= 1")
        self._http = http_client
        self._max_hops = max_hops
        self._user_agent = user_agent
        self._default_referer = default_referer
        self._timeout = timeout_seconds
        self._ctx = context or ExtractContext()

    @property
    def max_hops(self) -> int:
        return self._max_hops

    async def resolve(
        self,
        url: str,
        *,
        referer: str | None = None,
        jar: CookieJar | None = None,
        label: str = "",
    ) -> ResolvedSignal:
        jar = jar if jar is not None else CookieJar()
        current = url
        hop_referer = referer or self._default_referer
        visited: set[str] = set()
        rejected: str | None = None
        started = time.perf_counter()

        for hop in range(1, self._max_hops + 1):
            visited.add(current)
            html, page_url = await self._fetch(current, referer=hop_referer, jar=jar)
            log.debug("resolver_hop", hop=hop, url=page_url, size=len(html))

            media = first_match(MEDIA_STRATEGIES, html, page_url, self._ctx)
            next_url: str | None = None
            if media:
                verdict = classify_media_url(media)
                if verdict is Verdict.ACCEPT:
                    media_url = normalize_url(media, page_url)
                    log.info(
                        "signal_resolved",
                        url=url,
                        media_url=media_url[:160],
                        hops=hop,
                        label=label,
                        duration_ms=int((time.perf_counter() - started) * 1000),
                    )
                    return ResolvedSignal(
                        source_url=url,
                        media_url=media_url,
                        cookies=jar.header(),
                        media_type=detect_media_type(media_url),
                        quality_label=detect_quality(url),
                        label=label,
                        hops=hop,
                    )
                if verdict is Verdict.NEXT_HOP:
                    next_url = normalize_url(media, page_url)
                else:
                    rejected = media
                    log.debug("media_url_rejected", url=media[:160], hop=hop)

            if next_url is None:
                next_url = first_match(FRAME_STRATEGIES, html, page_url, self._ctx)
            if not next_url or next_url in visited:
                if rejected and is_ad_url(rejected):
                    raise FilteredError(f"only filtered media found at {page_url}")
                raise NotFoundError(f"no frame or media URL at hop {hop}: {page_url}")

            hop_referer = page_url
            current = next_url

        raise ExhaustedError(
            f"hop bound of {self._max_hops} exceeded for {url}",
            attempts=self._max_hops,
        )

    async def _fetch(
        self, url: str, *, referer: str, jar: CookieJar
    ) -> tuple[str, str]:
        return await fetch_document(
            self._http,
            url,
            user_agent=self._user_agent,
            referer=referer,
            jar=jar,
            timeout=self._timeout,
        )
