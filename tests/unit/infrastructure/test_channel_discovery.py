"""Tests for channel discovery (button scan, mirrors, commentary exclusion)."""

from __future__ import annotations

import httpx
import pytest
import respx

from signalrelay.domain.entities import is_commentary
from signalrelay.infrastructure.discovery.channel_discovery import (
    ChannelDiscovery,
    candidate_key,
    discover,
    entry_urls,
    fallback_label,
    guessed_candidates,
    steam_id,
    swap_domain,
)

BASE = "http://www.entry.example/live/3390710.html"

_ENTRY_HTML = """
<html><body>
<div class="sub_channel">
  <a data-play="/play/steam3390710.html" data-group="高清直播">HD</a>
  <a href="/play/steam3390711.html"><span>直播②</span></a>
  <a href="/play/steam3390712.html">主播解说</a>
  <a href="/play/steam3390713.html" title="English commentator">EN</a>
  <a href="http://other.example/host/3390714.html">备用</a>
  <a href="javascript:void(0)">none</a>
  <a href="#">top</a>
</div>
<ul><li><a href="/play/steam3390710.html">dup</a></li></ul>
<button data-play="//play.jgdhds.com/play/steam3390715.html">云直播</button>
</body></html>
"""


class TestDiscover:
    def test_collects_buttons_in_selector_order(self) -> None:
        buttons = discover(_ENTRY_HTML, BASE)
        assert buttons == [
            ("高清直播", "http://www.entry.example/play/steam3390710.html"),
            ("直播②", "http://www.entry.example/play/steam3390711.html"),
            ("云直播", "http://play.jgdhds.com/play/steam3390715.html"),
        ]

    def test_idempotent(self) -> None:
        assert set(discover(_ENTRY_HTML, BASE)) == set(discover(_ENTRY_HTML, BASE))

    def test_exclusion_is_complete(self) -> None:
        for label, url in discover(_ENTRY_HTML, BASE):
            assert not is_commentary(label)
            assert not is_commentary(url)

    def test_excludes_on_raw_text_when_label_is_clean(self) -> None:
        html = '<a class="item" data-label="线路3" href="/play/steam1234.html">解说</a>'
        assert discover(html, BASE) == []

    def test_fallback_label_when_button_is_empty(self) -> None:
        html = '<a class="item" href="/play/steam1234.html"></a>'
        assert discover(html, BASE) == [
            ("线路1", "http://www.entry.example/play/steam1234.html")
        ]

    def test_empty_page(self) -> None:
        assert discover("<html></html>", BASE) == []


class TestHelpers:
    def test_steam_id(self) -> None:
        assert steam_id("http://x/play/steam3390710.html") == "3390710"
        assert steam_id("http://x/play/sm.html") is None
        assert steam_id(None) is None

    def test_candidate_key_uses_id_and_host(self) -> None:
        assert candidate_key("http://a.example/play/steam1234.html") == (
            "1234",
            "a.example",
        )
        assert candidate_key("http://a.example/play/sm.html?id=9") == (
            "/play/sm.html?id=9",
            "a.example",
        )

    def test_fallback_label_by_host(self) -> None:
        assert fallback_label("http://play.sportsteam7777.com/x", 0) == "云直播④"
        assert fallback_label("http://play.sportsteam368.com/x", 0) == "云直播①"
        assert fallback_label("http://play.jgdhds.com/x", 0) == "云直播②"
        assert fallback_label("http://unknown.example/x", 2) == "线路3"

    def test_swap_domain_keeps_path_and_query(self) -> None:
        assert swap_domain("http://a.example/live/1.html?x=1", "https://b.example/") == (
            "https://b.example/live/1.html?x=1"
        )

    def test_entry_urls_deduplicates(self) -> None:
        urls = entry_urls(
            "http://a.example/live/1.html", ["http://a.example", "http://b.example"]
        )
        assert urls == ["http://a.example/live/1.html", "http://b.example/live/1.html"]

    def test_guessed_candidates(self) -> None:
        guesses = guessed_candidates(
            "3390710", ["http://play.jgdhds.com", "http://play.sportsteam368.com/"]
        )
        assert [g.url for g in guesses] == [
            "http://play.jgdhds.com/play/steam3390710.html",
            "http://play.sportsteam368.com/play/steam3390710.html",
        ]
        assert [g.label for g in guesses] == ["云直播②", "云直播①"]
        assert [g.position for g in guesses] == [0, 1]

    @pytest.mark.asyncio()
    async def test_guess_play_pages_uses_entry_mirrors(self) -> None:
        async with httpx.AsyncClient() as client:
            discovery = ChannelDiscovery(
                client,
                entry_domains=["http://play.sportsteam7777.com", "http://play.jgdhds.com"],
            )
            guesses = discovery.guess_play_pages("3390710", start_position=3)

        assert [g.url for g in guesses] == [
            "http://play.sportsteam7777.com/play/steam3390710.html",
            "http://play.jgdhds.com/play/steam3390710.html",
        ]
        assert [g.label for g in guesses] == ["云直播④", "云直播②"]
        assert [g.position for g in guesses] == [3, 4]


class TestChannelDiscovery:
    @respx.mock
    @pytest.mark.asyncio()
    async def test_merges_mirrors_and_falls_back_on_failure(self) -> None:
        seed = "http://www.entry.example/live/3390710.html"
        respx.get(seed).respond(200, text=_ENTRY_HTML)
        respx.get("http://play.sportsteam368.com/live/3390710.html").respond(503)

        async with httpx.AsyncClient() as client:
            discovery = ChannelDiscovery(
                client, entry_domains=["http://play.sportsteam368.com"]
            )
            candidates = await discovery.discover_match(seed)

        urls = [c.url for c in candidates]
        assert urls[:3] == [
            "http://www.entry.example/play/steam3390710.html",
            "http://www.entry.example/play/steam3390711.html",
            "http://play.jgdhds.com/play/steam3390715.html",
        ]
        assert "http://play.sportsteam368.com/live/3390710.html" in urls
        assert [c.position for c in candidates] == list(range(len(candidates)))
        assert all(not is_commentary(c.label) for c in candidates)
        assert candidates[0].entry_url == seed
        assert candidates[0].source_domain == "www.entry.example"

    @respx.mock
    @pytest.mark.asyncio()
    async def test_mirror_duplicates_are_merged(self) -> None:
        seed = "http://a.example/live/1.html"
        page = '<a class="item" href="http://play.jgdhds.com/play/steam1234.html">A</a>'
        respx.get(seed).respond(200, text=page)
        respx.get("http://b.example/live/1.html").respond(200, text=page)

        async with httpx.AsyncClient() as client:
            candidates = await ChannelDiscovery(
                client, entry_domains=["http://b.example"]
            ).discover_match(seed)

        urls = [c.url for c in candidates]
        assert urls.count("http://play.jgdhds.com/play/steam1234.html") == 1

    @respx.mock
    @pytest.mark.asyncio()
    async def test_start_position_offsets_candidates(self) -> None:
        seed = "http://a.example/live/1.html"
        respx.get(seed).respond(
            200, text='<a class="item" href="/play/steam1234.html">A</a>'
        )

        async with httpx.AsyncClient() as client:
            candidates = await ChannelDiscovery(client, entry_domains=[]).discover_match(
                seed, start_position=5
            )

        assert candidates[0].position == 5
