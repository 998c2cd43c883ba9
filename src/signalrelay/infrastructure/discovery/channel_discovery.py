"""Channel discovery - turn entry pages into ``DiscoveredCandidate`` lists.

Entry pages list their channels as buttons/links whose play target sits
in ``data-play``, ``href`` or ``data-url``.  Commentary ("主播/解说")
tracks are dropped here, before anything is ranked.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from urllib.parse import urlparse, urlunparse

import httpx
import structlog
from bs4 import Tag

from signalrelay.domain.entities import (
    DiscoveredCandidate,
    GuessedCandidate,
    is_commentary,
)
from signalrelay.domain.exceptions import NetworkError
from signalrelay.infrastructure.config.defaults import DESKTOP_USER_AGENT, ENTRY_DOMAINS
from signalrelay.infrastructure.resolver.extract import normalize_url, parse_html
from signalrelay.infrastructure.resolver.fetch import fetch_document

log = structlog.get_logger(__name__)

CHANNEL_SELECTORS: tuple[str, ...] = (
    ".sub_channel a",
    "a.item",
    ".channel-list a",
    ".line-list a",
    ".channel-item a",
    ".stream-item a",
    ".play-btn",
    ".btn-play",
    'a[href*="steam"]',
    'a[href*="/play/"]',
    "button[data-play]",
    "a[data-play]",
    "div.channel a",
    "ul li a",
    ".channel-btn",
    ".line-btn",
)

_TARGET_ATTRS = ("data-play", "href", "data-url")
_LABEL_ATTRS = ("data-group", "data-label", "title")
_WS_RE = re.compile(r"\s+")
_STEAM_ID_RE = re.compile(r"steam(\d+)")

_FALLBACK_LABELS: tuple[tuple[str, str], ...] = (
    ("sportsteam7777", "云直播④"),
    ("sportsteam368", "云直播①"),
    ("jgdhds", "云直播②"),
)


def _clean(text: str | None) -> str:
    return _WS_RE.sub(" ", text or "").strip()


def _target_of(element: Tag) -> str | None:
    for attr in _TARGET_ATTRS:
        value = element.get(attr)
        if isinstance(value, str) and value:
            return value
    return None


def _label_of(element: Tag, raw_text: str) -> str:
    candidates: list[str] = [
        str(element.get(attr) or "") for attr in _LABEL_ATTRS
    ]
    candidates.append(raw_text)
    for child in ("span", "strong"):
        node = element.find(child)
        candidates.append(node.get_text() if node is not None else "")
    for candidate in candidates:
        cleaned = _clean(candidate)
        if cleaned:
            return cleaned
    return ""


def discover(html: str, base_url: str) -> list[tuple[str, str]]:
    """Return ``(label, absolute_url)`` for every channel button in *html*.

    Order follows ``CHANNEL_SELECTORS`` then document order; each URL is
    reported once.  Commentary tracks are filtered on the label, the raw
    button text and the target URL.
    """
    soup = parse_html(html)
    seen: set[str] = set()
    buttons: list[tuple[str, str]] = []
    for selector in CHANNEL_SELECTORS:
        for element in soup.select(selector):
            target = _target_of(element)
            if not target or target.startswith("javascript") or target == "#":
                continue
            url = normalize_url(target, base_url)
            if url in seen:
                continue
            raw_text = _clean(element.get_text())
            label = _label_of(element, raw_text)
            if is_commentary(label) or is_commentary(raw_text) or is_commentary(url):
                log.debug("channel_excluded", label=label or raw_text, url=url)
                continue
            seen.add(url)
            buttons.append((label or f"线路{len(buttons) + 1}", url))
    return buttons


def steam_id(url: str | None) -> str | None:
    if not url:
        return None
    m = _STEAM_ID_RE.search(url)
    return m.group(1) if m else None


def candidate_key(url: str) -> tuple[str, str]:
    """``(resolvedId, host)`` identity used to merge mirror candidates."""
    parsed = urlparse(url)
    ident = steam_id(url)
    if ident is None:
        ident = parsed.path + (f"?{parsed.query}" if parsed.query else "")
    return ident, parsed.netloc


def fallback_label(entry_url: str, index: int) -> str:
    host = urlparse(entry_url).hostname or ""
    for needle, label in _FALLBACK_LABELS:
        if needle in host:
            return label
    return f"线路{index + 1}"


def swap_domain(url: str, domain: str) -> str:
    """Put *domain*'s scheme and host onto *url*, keeping path and query."""
    target = urlparse(domain.rstrip("/"))
    if not url:
        return f"{target.scheme}://{target.netloc}/"
    source = urlparse(url)
    return urlunparse(source._replace(scheme=target.scheme, netloc=target.netloc))


def entry_urls(seed_url: str, domains: Iterable[str]) -> list[str]:
    """The seed URL followed by the same path on every entry mirror."""
    urls: list[str] = []
    for url in (seed_url, *(swap_domain(seed_url, d) for d in domains)):
        if url and url not in urls:
            urls.append(url)
    return urls


def guessed_candidates(
    stream_id: str, domains: Sequence[str], *, start_position: int = 0
) -> list[GuessedCandidate]:
    """``/play/steam{id}.html`` on every entry mirror."""
    guesses: list[GuessedCandidate] = []
    for offset, domain in enumerate(domains):
        url = f"{domain.rstrip('/')}/play/steam{stream_id}.html"
        guesses.append(
            GuessedCandidate(
                label=fallback_label(url, offset),
                url=url,
                source_domain=urlparse(url).netloc,
                position=start_position + offset,
            )
        )
    return guesses


class ChannelDiscovery:
    """Fetch the seed entry page and its mirrors and merge their buttons.

    A mirror that fails to load, or that does not list itself, still
    contributes its own URL as a fallback candidate so the resolver can
    follow its player frame.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        entry_domains: Sequence[str] = ENTRY_DOMAINS,
        user_agent: str = DESKTOP_USER_AGENT,
        default_referer: str = "",
        timeout_seconds: float = 8.0,
    ) -> None:
        self._http = http_client
        self._entry_domains = list(entry_domains)
        self._user_agent = user_agent
        self._default_referer = default_referer
        self._timeout = timeout_seconds

    @property
    def entry_domains(self) -> list[str]:
        return list(self._entry_domains)

    def guess_play_pages(
        self, stream_id: str, *, start_position: int = 0
    ) -> list[GuessedCandidate]:
        return guessed_candidates(
            stream_id, self._entry_domains, start_position=start_position
        )

    async def discover_match(
        self, seed_url: str, *, start_position: int = 0
    ) -> list[DiscoveredCandidate]:
        merged: list[tuple[str, str, str]] = []
        keys: set[tuple[str, str]] = set()

        def add(label: str, url: str, entry: str) -> None:
            key = candidate_key(url)
            if key in keys:
                return
            keys.add(key)
            merged.append((label, url, entry))

        for entry in entry_urls(seed_url, self._entry_domains):
            try:
                html, page_url = await fetch_document(
                    self._http,
                    entry,
                    user_agent=self._user_agent,
                    referer=self._default_referer,
                    timeout=self._timeout,
                )
            except NetworkError as e:
                log.warning("entry_page_unavailable", url=entry, error=str(e))
                add(fallback_label(entry, len(merged)), entry, entry)
                continue

            buttons = discover(html, page_url)
            if not buttons:
                log.warning("entry_page_without_channels", url=entry)
            for label, url in buttons:
                add(label, url, entry)
            if all(url != entry for _, url in buttons):
                add(fallback_label(entry, len(merged)), entry, entry)

        if not merged and seed_url:
            merged.append(("线路1", seed_url, seed_url))

        candidates = [
            DiscoveredCandidate(
                label=label,
                url=url,
                source_domain=urlparse(url).netloc,
                position=start_position + i,
                entry_url=entry,
            )
            for i, (label, url, entry) in enumerate(merged)
        ]
        log.info("channels_discovered", seed=seed_url, count=len(candidates))
        return candidates
