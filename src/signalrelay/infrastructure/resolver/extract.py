"""Extraction strategies for one hop of the page resolver.

Two ordered strategy chains operate on a fetched document:

- **media strategies** look for a playable media URL (cipher marker
  first, then player-id parameters, then raw ``.m3u8`` patterns);
- **frame strategies** look for the next document to fetch (first
  ``<iframe>`` element, raw iframe markup, inline ``/play/`` sources,
  an ``id`` query parameter on relay pages, generic ``src=`` strings).

Every strategy is a plain function ``(html, base_url, ctx) -> str | None``;
the first non-``None`` answer wins.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from urllib.parse import parse_qs, unquote, urlparse

from bs4 import BeautifulSoup

from signalrelay.domain.entities import MediaType
from signalrelay.infrastructure.crypto.decryptor import (
    DEFAULT_CIPHER_KEY,
    decrypt_payload,
    find_cipher_payload,
)


@dataclass(frozen=True)
class ExtractContext:
    """Static inputs shared by all strategies."""

    cipher_key: str = DEFAULT_CIPHER_KEY
    stream_host: str = "cloud.yumixiu768.com"


Strategy = Callable[[str, str, ExtractContext], "str | None"]

_MEDIA_EXTENSIONS: tuple[str, ...] = (".m3u8", ".mp4", ".flv")
AD_KEYWORDS: tuple[str, ...] = ("ad", "banner", "popup", "jrs945", "jrs04", "jrs0")


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def normalize_url(url: str, base_url: str) -> str:
    """Make *url* absolute against *base_url*.

    Protocol-relative URLs get ``http:``; anything not starting with
    ``http`` is joined to the base *host* (not the base directory), the
    way the upstream player pages expect.
    """
    url = url.strip()
    if url.startswith("//"):
        return "http:" + url
    if url.startswith("http"):
        return url
    base = urlparse(base_url)
    origin = f"{base.scheme}://{base.netloc}"
    if url.startswith("/"):
        return origin + url
    return f"{origin}/{url}"


def _scheme_fix(url: str) -> str:
    return "http:" + url if url.startswith("//") else url


# ---------------------------------------------------------------------------
# Media strategies
# ---------------------------------------------------------------------------


def media_from_cipher(html: str, base_url: str, ctx: ExtractContext) -> str | None:
    payload = find_cipher_payload(html)
    if payload is None:
        return None
    decoded = decrypt_payload(payload, ctx.cipher_key)
    return decoded.url if decoded else None


_HOST_CONCAT_RE = re.compile(r"""//([a-z0-9.-]+)"\s*\+\s*id""", re.IGNORECASE)


def media_from_player_base(html: str, base_url: str, ctx: ExtractContext) -> str | None:
    """The current page *is* a ``msss.html?id=<m3u8 path>`` player."""
    parsed = urlparse(base_url)
    if "msss.html" not in parsed.path:
        return None
    ids = parse_qs(parsed.query).get("id")
    if not ids or ".m3u8" not in ids[0]:
        return None
    m = _HOST_CONCAT_RE.search(html)
    host = m.group(1) if m else ctx.stream_host
    scheme = "https:" if parsed.scheme == "https" else "http:"
    path = ids[0] if ids[0].startswith("/") else f"/{ids[0]}"
    return f"{scheme}//{host}{path}"


_PLAYER_SRC_RE = re.compile(r"""src\s*=\s*["']([^"']*msss\.html\?id=[^"']*)["']""", re.IGNORECASE)


def media_from_player_src(html: str, base_url: str, ctx: ExtractContext) -> str | None:
    """A ``msss.html?id=`` player is embedded; its id is the stream path or number."""
    m = _PLAYER_SRC_RE.search(html)
    if not m:
        return None
    id_match = re.search(r"id=([^&]*)", m.group(1))
    if not id_match or not id_match.group(1):
        return None
    stream_id = unquote(id_match.group(1))
    if ".m3u8" in stream_id:
        path = stream_id if stream_id.startswith("/") else f"/{stream_id}"
        return f"http://{ctx.stream_host}{path}"
    return f"http://{ctx.stream_host}/live/{stream_id}.m3u8"


_SRC_M3U8_RE = re.compile(r"""src\s*=\s*["']([^"']*\.m3u8[^"']*)["']""", re.IGNORECASE)


def media_from_src_attribute(html: str, base_url: str, ctx: ExtractContext) -> str | None:
    m = _SRC_M3U8_RE.search(html)
    return _scheme_fix(m.group(1)) if m else None


_QUOTED_M3U8_RE = re.compile(r"""["']([^"']*\.m3u8[^"']*)["']""", re.IGNORECASE)


def media_from_quoted_literal(html: str, base_url: str, ctx: ExtractContext) -> str | None:
    """Quoted ``.m3u8`` strings in scripts; signed (``auth_key``) URLs first."""
    found = [
        m.group(1)
        for m in _QUOTED_M3U8_RE.finditer(html)
        if "ad" not in m.group(1) and "banner" not in m.group(1)
    ]
    if not found:
        return None
    for url in found:
        if "auth_key" in url:
            return _scheme_fix(url)
    return _scheme_fix(found[0])


_ABSOLUTE_MEDIA_RE = re.compile(
    r"""(https?://[^\s"'<>]+\.(?:m3u8|flv|mp4)[^\s"'<>]*)""", re.IGNORECASE
)


def media_from_absolute_url(html: str, base_url: str, ctx: ExtractContext) -> str | None:
    m = _ABSOLUTE_MEDIA_RE.search(html)
    return m.group(1) if m else None


MEDIA_STRATEGIES: Sequence[Strategy] = (
    media_from_cipher,
    media_from_player_base,
    media_from_player_src,
    media_from_src_attribute,
    media_from_quoted_literal,
    media_from_absolute_url,
)


# ---------------------------------------------------------------------------
# Frame strategies
# ---------------------------------------------------------------------------


def frame_from_iframe_element(html: str, base_url: str, ctx: ExtractContext) -> str | None:
    iframe = parse_html(html).find("iframe")
    if iframe is None:
        return None
    src = iframe.get("src")
    if isinstance(src, str) and src.strip():
        return normalize_url(src, base_url)
    return None


_RAW_IFRAME_RE = re.compile(r"""<iframe[^>]+src=['"]([^'"]+)['"]""", re.IGNORECASE)


def frame_from_iframe_markup(html: str, base_url: str, ctx: ExtractContext) -> str | None:
    """Iframe markup inside script strings (invisible to the HTML parser)."""
    m = _RAW_IFRAME_RE.search(html)
    return normalize_url(m.group(1), base_url) if m else None


_INLINE_PLAY_RE = re.compile(r"""src\s*=\s*['"]([^"'\n]*/play/[^"'\s]*)['"]""", re.IGNORECASE)


def frame_from_inline_play(html: str, base_url: str, ctx: ExtractContext) -> str | None:
    m = _INLINE_PLAY_RE.search(html)
    return normalize_url(m.group(1), base_url) if m else None


def frame_from_relay_id(html: str, base_url: str, ctx: ExtractContext) -> str | None:
    """``sm.html?id=X`` relay pages forward to ``/play/X.html`` via script."""
    parsed = urlparse(base_url)
    if "sm.html" not in parsed.path:
        return None
    ids = parse_qs(parsed.query).get("id")
    if not ids or not ids[0]:
        return None
    return f"{parsed.scheme}://{parsed.netloc}/play/{ids[0]}.html"


_GENERIC_SRC_RE = re.compile(r"""src\s*=\s*['"]([^'"]*)['"]""", re.IGNORECASE)


def frame_from_generic_src(html: str, base_url: str, ctx: ExtractContext) -> str | None:
    m = _GENERIC_SRC_RE.search(html)
    if not m:
        return None
    src = m.group(1)
    if src and ("/play/" in src or ".html" in src):
        return normalize_url(src, base_url)
    return None


FRAME_STRATEGIES: Sequence[Strategy] = (
    frame_from_iframe_element,
    frame_from_iframe_markup,
    frame_from_inline_play,
    frame_from_relay_id,
    frame_from_generic_src,
)


def first_match(
    strategies: Sequence[Strategy], html: str, base_url: str, ctx: ExtractContext
) -> str | None:
    for strategy in strategies:
        found = strategy(html, base_url, ctx)
        if found:
            return found
    return None


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class Verdict(Enum):
    ACCEPT = "accept"
    NEXT_HOP = "next_hop"
    REJECT = "reject"


def classify_media_url(url: str) -> Verdict:
    """Ad/junk filter for an extracted URL.

    Media extensions are accepted outright, HTML pages are followed as
    the next hop, denylisted keywords and anything unrecognised are
    rejected.
    """
    lower = url.lower()
    if any(ext in lower for ext in _MEDIA_EXTENSIONS):
        return Verdict.ACCEPT
    if ".html" in lower:
        return Verdict.NEXT_HOP
    return Verdict.REJECT


def is_ad_url(url: str) -> bool:
    lower = url.lower()
    return any(keyword in lower for keyword in AD_KEYWORDS)


def detect_media_type(url: str) -> MediaType:
    if ".m3u8" in url:
        return "hls"
    if ".flv" in url:
        return "flv"
    if ".mp4" in url:
        return "mp4"
    return "unknown"


def detect_quality(url: str) -> str:
    lower = url.lower()
    if "hd" in lower or "高清" in lower or "1080" in lower:
        return "高清"
    if "sd" in lower or "标清" in lower or "480" in lower:
        return "标清"
    if "主播" in lower or "解说" in lower:
        return "解说"
    return "标准"
