"""Tests for PageResolver - the bounded multi-hop walk."""

from __future__ import annotations

from unittest.mock import MagicMock

import httpx
import pytest
import respx

from signalrelay.domain.entities import CookieJar, SignalPayload
from signalrelay.domain.exceptions import (
    ExhaustedError,
    FilteredError,
    NetworkError,
    NotFoundError,
)
from signalrelay.infrastructure.crypto.decryptor import encrypt_payload
from signalrelay.infrastructure.resolver.page_resolver import PageResolver

ENTRY = "http://play.example.com/play/steam3390710.html"
MEDIA = "https://cdn.example.com/live/3390710.m3u8?auth_key=1-0-0-abc"


def _iframe(src: str) -> str:
    return f'<html><body><iframe src="{src}"></iframe></body></html>'


def _media_page(url: str = MEDIA) -> str:
    return f'<script>var player = new Player({{ source: "{url}" }});</script>'


class TestCipherEntry:
    @respx.mock
    @pytest.mark.asyncio()
    async def test_cipher_only_entry_needs_no_further_fetch(self) -> None:
        token = encrypt_payload(SignalPayload(url=MEDIA, ts=1735732800))
        route = respx.get(ENTRY).respond(
            200, text=f"<script>var encodedStr = '{token}';</script>"
        )

        async with httpx.AsyncClient() as client:
            signal = await PageResolver(client).resolve(ENTRY, label="线路1")

        assert signal.media_url == MEDIA
        assert signal.hops == 1
        assert signal.media_type == "hls"
        assert signal.label == "线路1"
        assert signal.source_url == ENTRY
        assert route.call_count == 1
        assert len(respx.calls) == 1


class TestHopBound:
    @respx.mock
    @pytest.mark.asyncio()
    async def test_three_hop_chain_succeeds(self) -> None:
        respx.get(ENTRY).respond(200, text=_iframe("/frame/a.html"))
        respx.get("http://play.example.com/frame/a.html").respond(
            200, text=_iframe("http://relay.example.com/b.html")
        )
        respx.get("http://relay.example.com/b.html").respond(200, text=_media_page())

        async with httpx.AsyncClient() as client:
            signal = await PageResolver(client, max_hops=4).resolve(ENTRY)

        assert signal.media_url == MEDIA
        assert signal.hops == 3

    @respx.mock(assert_all_called=False)
    @pytest.mark.asyncio()
    async def test_chain_needing_fifth_document_is_exhausted(self) -> None:
        respx.get(ENTRY).respond(200, text=_iframe("/f/1.html"))
        respx.get("http://play.example.com/f/1.html").respond(
            200, text=_iframe("/f/2.html")
        )
        respx.get("http://play.example.com/f/2.html").respond(
            200, text=_iframe("/f/3.html")
        )
        respx.get("http://play.example.com/f/3.html").respond(
            200, text=_iframe("/f/4.html")
        )
        fifth = respx.get("http://play.example.com/f/4.html").respond(
            200, text=_media_page()
        )

        async with httpx.AsyncClient() as client:
            with pytest.raises(ExhaustedError) as exc_info:
                await PageResolver(client, max_hops=4).resolve(ENTRY)

        assert exc_info.value.attempts == 4
        assert not fifth.called


class TestFailures:
    @respx.mock
    @pytest.mark.asyncio()
    async def test_forbidden_is_network_error(self) -> None:
        respx.get(ENTRY).respond(403, text="denied")

        async with httpx.AsyncClient() as client:
            with pytest.raises(NetworkError) as exc_info:
                await PageResolver(client).resolve(ENTRY)

        assert exc_info.value.status == 403
        assert exc_info.value.body == b"denied"

    @respx.mock
    @pytest.mark.asyncio()
    async def test_transport_error_is_network_error(self) -> None:
        respx.get(ENTRY).mock(side_effect=httpx.ConnectError("refused"))

        async with httpx.AsyncClient() as client:
            with pytest.raises(NetworkError) as exc_info:
                await PageResolver(client).resolve(ENTRY)

        assert exc_info.value.status is None

    @respx.mock
    @pytest.mark.asyncio()
    async def test_dead_end_is_not_found(self) -> None:
        respx.get(ENTRY).respond(200, text="<html><p>offline</p></html>")

        async with httpx.AsyncClient() as client:
            with pytest.raises(NotFoundError):
                await PageResolver(client).resolve(ENTRY)

    @respx.mock
    @pytest.mark.asyncio()
    async def test_frame_loop_is_not_found(self) -> None:
        respx.get(ENTRY).respond(200, text=_iframe(ENTRY))

        async with httpx.AsyncClient() as client:
            with pytest.raises(NotFoundError):
                await PageResolver(client).resolve(ENTRY)

    @respx.mock
    @pytest.mark.asyncio()
    async def test_only_ad_media_is_filtered(self) -> None:
        token = encrypt_payload(SignalPayload(url="http://ad.example.com/popup"))
        respx.get(ENTRY).respond(
            200, text=f"<script>var encodedStr = '{token}';</script>"
        )

        async with httpx.AsyncClient() as client:
            with pytest.raises(FilteredError):
                await PageResolver(client).resolve(ENTRY)

    def test_rejects_zero_hop_bound(self) -> None:
        with pytest.raises(ValueError):
            PageResolver(MagicMock(), max_hops=0)


class TestCookiesAndReferer:
    @respx.mock
    @pytest.mark.asyncio()
    async def test_cookies_and_referer_carried_between_hops(self) -> None:
        respx.get(ENTRY).respond(
            200,
            text=_iframe("/frame/a.html"),
            headers={"Set-Cookie": "sid=abc; Path=/"},
        )
        inner = respx.get("http://play.example.com/frame/a.html").respond(
            200, text=_media_page()
        )

        jar = CookieJar()
        async with httpx.AsyncClient() as client:
            signal = await PageResolver(
                client, default_referer="https://www.entry.example/"
            ).resolve(ENTRY, jar=jar)

        first = respx.calls[0].request
        assert first.headers["referer"] == "https://www.entry.example/"
        sent = inner.calls[0].request.headers
        assert sent["cookie"] == "sid=abc"
        assert sent["referer"] == ENTRY
        assert signal.cookies == "sid=abc"
        assert jar.get("sid") == "abc"

    @respx.mock
    @pytest.mark.asyncio()
    async def test_caller_referer_wins_over_default(self) -> None:
        route = respx.get(ENTRY).respond(200, text=_media_page())

        async with httpx.AsyncClient() as client:
            await PageResolver(client, default_referer="http://default/").resolve(
                ENTRY, referer="http://caller/"
            )

        assert route.calls[0].request.headers["referer"] == "http://caller/"

    @respx.mock
    @pytest.mark.asyncio()
    async def test_decrypted_html_url_becomes_next_hop(self) -> None:
        inner = "http://play.example.com/player/inner.html"
        token = encrypt_payload(SignalPayload(url=inner))
        respx.get(ENTRY).respond(
            200, text=f"<script>var encodedStr = '{token}';</script>"
        )
        respx.get(inner).respond(200, text=_media_page())

        async with httpx.AsyncClient() as client:
            signal = await PageResolver(client).resolve(ENTRY)

        assert signal.media_url == MEDIA
        assert signal.hops == 2

    @respx.mock
    @pytest.mark.asyncio()
    async def test_player_page_resolves_to_stream_host(self) -> None:
        player = "http://play.example.com/player/msss.html?id=/live/x.m3u8"
        respx.get(ENTRY).respond(200, text=_iframe("/player/sm.html?id=steam1"))
        respx.get("http://play.example.com/player/sm.html?id=steam1").respond(
            200,
            text="<script>location.href='http://play.example.com/play/steam1.html'</script>",
        )
        respx.get("http://play.example.com/play/steam1.html").respond(
            200, text=_iframe(player)
        )

        async with httpx.AsyncClient() as client:
            signal = await PageResolver(client).resolve(ENTRY)

        assert signal.media_url == "http://cloud.yumixiu768.com/live/x.m3u8"
        assert signal.hops == 3
