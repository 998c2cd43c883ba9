"""HLS proxy - manifest rewriting, segment relay and token re-resolution.

Every URI line of a proxied manifest is replaced by a
``/proxy/segment?url=..&streamId=..&session=..&referer=..`` URL so the
player fetches sub-playlists and segments through this service as
well.  ``session`` is the base64 of the upstream ``Cookie`` header and
``referer`` the base64 of the player page URL.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
from dataclasses import dataclass
from urllib.parse import urlencode, urljoin

import httpx
import structlog

from signalrelay.domain.entities import CookieJar, ResolvedSignal
from signalrelay.domain.exceptions import NetworkError, SignalError
from signalrelay.domain.ports.page_resolver import PageResolverPort
from signalrelay.infrastructure.config.defaults import (
    DESKTOP_USER_AGENT,
    MOBILE_USER_AGENT,
)
from signalrelay.infrastructure.proxy.session_store import (
    StreamSession,
    StreamSessionStore,
)
from signalrelay.infrastructure.proxy.ttl_cache import TtlLruCache

log = structlog.get_logger(__name__)

MPEGURL = "application/vnd.apple.mpegurl"
DEFAULT_SEGMENT_TYPE = "video/mp2t"
SEGMENT_PATH = "/proxy/segment"

# Upstream statuses that usually mean an expired auth token.
_EXPIRED_STATUSES = frozenset({403, 404})


@dataclass(frozen=True)
class HeaderProfile:
    name: str
    user_agent: str
    accept: str


HEADER_PROFILES: tuple[HeaderProfile, ...] = (
    HeaderProfile(
        "desktop",
        DESKTOP_USER_AGENT,
        "application/vnd.apple.mpegurl, application/x-mpegURL, "
        "application/octet-stream, */*",
    ),
    HeaderProfile("mobile", MOBILE_USER_AGENT, "*/*"),
)

_SEGMENT_PROFILE = HeaderProfile("segment", DESKTOP_USER_AGENT, "*/*")


@dataclass(frozen=True)
class ProxiedResource:
    body: bytes
    content_type: str


@dataclass(frozen=True)
class CachedManifest:
    text: str
    base_url: str
    cookie: str
    referer: str


# ---------------------------------------------------------------------------
# Tokens and rewriting
# ---------------------------------------------------------------------------


def encode_token(value: str) -> str:
    if not value:
        return ""
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def decode_token(token: str | None) -> str:
    """Inverse of :func:`encode_token`; ``''`` for empty or malformed tokens."""
    if not token:
        return ""
    try:
        return base64.b64decode(token).decode("utf-8")
    except (binascii.Error, ValueError) as e:
        log.debug("token_decode_failed", error=str(e))
        return ""


def proxied_url(
    absolute_url: str,
    *,
    stream_id: str = "",
    session: str = "",
    referer: str = "",
    segment_path: str = SEGMENT_PATH,
) -> str:
    query = urlencode(
        [
            ("url", absolute_url),
            ("streamId", stream_id),
            ("session", session),
            ("referer", referer),
        ]
    )
    return f"{segment_path}?{query}"


def rewrite_manifest(
    content: str,
    base_url: str,
    *,
    stream_id: str = "",
    session: str = "",
    referer: str = "",
    segment_path: str = SEGMENT_PATH,
) -> str:
    """Replace every URI line with a proxied URL.

    Lines are resolved against *base_url* first, so relative and
    absolute URIs end up identical once unwrapped.  Tag/comment lines
    and blank lines pass through unchanged.
    """
    lines: list[str] = []
    for line in content.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            lines.append(line)
            continue
        lines.append(
            proxied_url(
                urljoin(base_url, stripped),
                stream_id=stream_id,
                session=session,
                referer=referer,
                segment_path=segment_path,
            )
        )
    return "\n".join(lines)


def looks_like_manifest(content_type: str, body: bytes) -> bool:
    return "mpegurl" in content_type.lower() or b"#EXTM3U" in body[:7]


# ---------------------------------------------------------------------------
# Proxy service
# ---------------------------------------------------------------------------


class StreamProxy:
    """Fetch, rewrite and cache manifests and segments for the player.

    Args:
        http_client: Shared ``httpx.AsyncClient``.
        sessions: Stream sessions written by successful resolutions.
        manifest_cache: Short-TTL cache of raw upstream manifests.
        segment_cache: Longer-TTL cache of segment bytes.
        resolver: Used for the single re-resolution on 403/404; ``None``
            disables re-resolution.
        default_referer: Referer used when the request carries none.
        force_referer: Send ``Referer`` upstream (most CDNs reject it).
        play_domain: Mirror used to rebuild a play page from a stream id.
        max_concurrent: Upper bound on parallel upstream fetches.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        sessions: StreamSessionStore,
        manifest_cache: TtlLruCache[CachedManifest],
        segment_cache: TtlLruCache[ProxiedResource],
        resolver: PageResolverPort | None = None,
        default_referer: str = "",
        force_referer: bool = False,
        timeout_seconds: float = 15.0,
        play_domain: str = "http://play.jgdhds.com",
        segment_path: str = SEGMENT_PATH,
        max_concurrent: int = 50,
    ) -> None:
        self._http = http_client
        self._sessions = sessions
        self._manifests = manifest_cache
        self._segments = segment_cache
        self._resolver = resolver
        self._default_referer = default_referer
        self._force_referer = force_referer
        self._timeout = timeout_seconds
        self._play_domain = play_domain.rstrip("/")
        self._segment_path = segment_path
        self._semaphore = asyncio.Semaphore(max_concurrent)

    async def manifest(
        self,
        url: str,
        *,
        session: str = "",
        referer: str = "",
        stream_id: str = "",
    ) -> ProxiedResource:
        """Serve the rewritten manifest of *url*.

        A stored stream session only supplies cookies and referer; its
        ``play_url`` is used solely for the retry after a 403/404.

        Raises:
            NetworkError: upstream failure after both header profiles and,
                when *stream_id* is set, one retry.
        """
        cookie = decode_token(session)
        referer_header = decode_token(referer) or self._default_referer

        stored = self._sessions.get(stream_id)
        if stored is not None:
            referer_header = stored.source_url or referer_header
            if not cookie and stored.cookies:
                cookie = stored.cookies
                session = encode_token(cookie)

        key = f"{url}|{stream_id}|{session}|{referer}"
        cached = self._manifests.get(key)
        if cached is None:
            cached = await self._load_manifest(
                url,
                cookie=cookie,
                referer_header=referer_header,
                stream_id=stream_id,
                referer_token=referer,
                stored=stored,
            )
            self._manifests.set(key, cached, size=len(cached.text))
        else:
            log.debug("manifest_cache_hit", url=url[:160])

        body = rewrite_manifest(
            cached.text,
            cached.base_url,
            stream_id=stream_id,
            session=session or encode_token(cached.cookie),
            referer=referer or encode_token(cached.referer),
            segment_path=self._segment_path,
        )
        return ProxiedResource(body.encode("utf-8"), MPEGURL)

    async def segment(
        self,
        url: str,
        *,
        session: str = "",
        referer: str = "",
        stream_id: str = "",
    ) -> ProxiedResource:
        """Serve segment bytes, or a rewritten nested manifest."""
        key = f"{url}|{stream_id}|{session}|{referer}"
        cached = self._segments.get(key)
        if cached is not None:
            return cached

        cookie = decode_token(session)
        referer_header = decode_token(referer) or self._default_referer
        stored = self._sessions.get(stream_id)
        if stored is not None:
            referer_header = stored.source_url or referer_header
            if not cookie and stored.cookies:
                cookie = stored.cookies
                session = encode_token(cookie)

        resp = await self._fetch(url, _SEGMENT_PROFILE, cookie, referer_header)
        content_type = resp.headers.get("content-type", "")
        body = resp.content

        if looks_like_manifest(content_type, body):
            rewritten = rewrite_manifest(
                body.decode("utf-8", errors="replace"),
                str(resp.url),
                stream_id=stream_id,
                session=session or encode_token(cookie),
                referer=referer or encode_token(referer_header),
                segment_path=self._segment_path,
            )
            return ProxiedResource(rewritten.encode("utf-8"), MPEGURL)

        resource = ProxiedResource(body, content_type or DEFAULT_SEGMENT_TYPE)
        self._segments.set(key, resource, size=len(body))
        return resource

    # -- internal helpers ----------------------------------------------------

    async def _load_manifest(
        self,
        target: str,
        *,
        cookie: str,
        referer_header: str,
        stream_id: str,
        referer_token: str,
        stored: StreamSession | None = None,
    ) -> CachedManifest:
        try:
            text, base_url = await self._fetch_manifest(target, cookie, referer_header)
        except NetworkError as e:
            if not stream_id or e.status not in _EXPIRED_STATUSES:
                raise
            log.warning("manifest_expired", stream_id=stream_id, status=e.status)
            if stored is not None and stored.play_url and stored.play_url != target:
                # Refreshed since the player built its URL.
                retry_url = stored.play_url
                cookie = stored.cookies or cookie
            else:
                refreshed = await self._re_resolve(stream_id, referer_token, target)
                if refreshed is None:
                    raise
                retry_url = refreshed.media_url
                cookie = refreshed.cookies or cookie
                referer_header = refreshed.source_url or referer_header
            log.info("manifest_retry", stream_id=stream_id, url=retry_url[:160])
            text, base_url = await self._fetch_manifest(retry_url, cookie, referer_header)
        return CachedManifest(text, base_url, cookie, referer_header)

    async def _fetch_manifest(
        self, url: str, cookie: str, referer_header: str
    ) -> tuple[str, str]:
        last_error: NetworkError | None = None
        for profile in HEADER_PROFILES:
            try:
                resp = await self._fetch(url, profile, cookie, referer_header)
            except NetworkError as e:
                log.warning(
                    "manifest_profile_failed",
                    url=url[:160],
                    profile=profile.name,
                    status=e.status,
                )
                last_error = e
                continue
            return resp.text, str(resp.url)
        assert last_error is not None
        raise last_error

    async def _re_resolve(
        self, stream_id: str, referer_token: str, target: str
    ) -> ResolvedSignal | None:
        if self._resolver is None:
            return None
        play_page = (
            decode_token(referer_token)
            or f"{self._play_domain}/play/steam{stream_id}.html"
        )
        try:
            refreshed = await self._resolver.resolve(play_page, jar=CookieJar())
        except SignalError as e:
            log.warning(
                "manifest_re_resolve_failed",
                stream_id=stream_id,
                play_page=play_page,
                error=str(e),
            )
            return None
        self._sessions.set(
            stream_id,
            play_url=refreshed.media_url,
            cookies=refreshed.cookies,
            source_url=refreshed.source_url,
        )
        log.info(
            "manifest_re_resolved",
            stream_id=stream_id,
            old_url=target[:160],
            new_url=refreshed.media_url[:160],
        )
        return refreshed

    async def _fetch(
        self,
        url: str,
        profile: HeaderProfile,
        cookie: str,
        referer_header: str,
    ) -> httpx.Response:
        headers = {
            "User-Agent": profile.user_agent,
            "Accept": profile.accept,
            "Accept-Language": "zh-CN,zh;q=0.9,en;q=0.8",
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
        }
        if cookie:
            headers["Cookie"] = cookie
        if self._force_referer and referer_header:
            headers["Referer"] = referer_header

        async with self._semaphore:
            try:
                resp = await self._http.get(
                    url, headers=headers, follow_redirects=True, timeout=self._timeout
                )
            except httpx.HTTPError as e:
                raise NetworkError(f"upstream fetch failed: {e}", url=url) from e

        if not resp.is_success:
            raise NetworkError(
                f"upstream returned {resp.status_code}",
                url=url,
                status=resp.status_code,
                body=resp.content,
                content_type=resp.headers.get("content-type"),
            )
        return resp
