"""Tests for the hop extraction strategies and the ad/junk filter."""

from __future__ import annotations

from signalrelay.domain.entities import SignalPayload
from signalrelay.infrastructure.crypto.decryptor import encrypt_payload
from signalrelay.infrastructure.resolver.extract import (
    FRAME_STRATEGIES,
    MEDIA_STRATEGIES,
    ExtractContext,
    Verdict,
    classify_media_url,
    detect_media_type,
    detect_quality,
    first_match,
    frame_from_generic_src,
    frame_from_iframe_element,
    frame_from_iframe_markup,
    frame_from_relay_id,
    is_ad_url,
    media_from_cipher,
    media_from_player_base,
    media_from_player_src,
    media_from_quoted_literal,
    normalize_url,
)

CTX = ExtractContext()
BASE = "http://play.jgdhds.com/play/steam3390710.html"


class TestNormalizeUrl:
    def test_protocol_relative(self) -> None:
        assert normalize_url("//cdn.example.com/a.m3u8", BASE) == (
            "http://cdn.example.com/a.m3u8"
        )

    def test_absolute_unchanged(self) -> None:
        assert normalize_url("https://x.com/a", BASE) == "https://x.com/a"

    def test_host_relative(self) -> None:
        assert normalize_url("/play/sm.html?id=1", BASE) == (
            "http://play.jgdhds.com/play/sm.html?id=1"
        )

    def test_bare_path_joins_host_not_directory(self) -> None:
        assert normalize_url("frame.html", BASE) == "http://play.jgdhds.com/frame.html"


class TestMediaStrategies:
    def test_cipher_marker(self) -> None:
        token = encrypt_payload(SignalPayload(url="http://cdn.example.com/live/1.m3u8"))
        html = f"<script>var encodedStr = '{token}';</script>"
        assert media_from_cipher(html, BASE, CTX) == "http://cdn.example.com/live/1.m3u8"

    def test_cipher_marker_with_garbage_falls_through(self) -> None:
        html = """<script>var encodedStr = 'zzzz';
        var src = "http://cdn.example.com/live/2.m3u8";</script>"""
        assert media_from_cipher(html, BASE, CTX) is None
        assert first_match(MEDIA_STRATEGIES, html, BASE, CTX) == (
            "http://cdn.example.com/live/2.m3u8"
        )

    def test_player_base_uses_concatenated_host(self) -> None:
        url = "https://play.jgdhds.com/player/msss.html?id=/live/abc.m3u8"
        html = """<script>var u = "//stream.example.net" + id;</script>"""
        assert media_from_player_base(html, url, CTX) == (
            "https://stream.example.net/live/abc.m3u8"
        )

    def test_player_base_falls_back_to_stream_host(self) -> None:
        url = "http://play.jgdhds.com/player/msss.html?id=live/abc.m3u8"
        assert media_from_player_base("", url, CTX) == (
            "http://cloud.yumixiu768.com/live/abc.m3u8"
        )

    def test_player_src_numeric_id(self) -> None:
        html = '<iframe src="/player/msss.html?id=3390710"></iframe>'
        assert media_from_player_src(html, BASE, CTX) == (
            "http://cloud.yumixiu768.com/live/3390710.m3u8"
        )

    def test_player_src_encoded_path(self) -> None:
        html = '<iframe src="/player/msss.html?id=%2Flive%2Fx.m3u8"></iframe>'
        assert media_from_player_src(html, BASE, CTX) == (
            "http://cloud.yumixiu768.com/live/x.m3u8"
        )

    def test_quoted_literal_prefers_signed_url(self) -> None:
        html = """
        var a = "http://cdn.example.com/live/plain.m3u8";
        var b = "http://cdn.example.com/live/signed.m3u8?auth_key=1-0-0-abc";
        """
        assert media_from_quoted_literal(html, BASE, CTX) == (
            "http://cdn.example.com/live/signed.m3u8?auth_key=1-0-0-abc"
        )

    def test_quoted_literal_skips_banner(self) -> None:
        html = """var a = "http://cdn.example.com/banner/promo.m3u8";"""
        assert media_from_quoted_literal(html, BASE, CTX) is None

    def test_absolute_url_in_text(self) -> None:
        html = "<p>stream: http://cdn.example.com/v/1.flv?x=1 end</p>"
        assert first_match(MEDIA_STRATEGIES, html, BASE, CTX) == (
            "http://cdn.example.com/v/1.flv?x=1"
        )

    def test_no_media(self) -> None:
        assert first_match(MEDIA_STRATEGIES, "<html></html>", BASE, CTX) is None


class TestFrameStrategies:
    def test_iframe_element(self) -> None:
        html = '<html><body><iframe src="/play/sm.html?id=3390710"></iframe></body></html>'
        assert frame_from_iframe_element(html, BASE, CTX) == (
            "http://play.jgdhds.com/play/sm.html?id=3390710"
        )

    def test_iframe_markup_inside_script(self) -> None:
        html = """<script>document.write("<iframe width=100 src='//p.example.com/x.html'>")</script>"""
        assert frame_from_iframe_markup(html, BASE, CTX) == "http://p.example.com/x.html"

    def test_relay_id(self) -> None:
        url = "http://play.jgdhds.com/play/sm.html?id=3390710"
        assert frame_from_relay_id("<html></html>", url, CTX) == (
            "http://play.jgdhds.com/play/3390710.html"
        )

    def test_relay_id_requires_relay_page(self) -> None:
        assert frame_from_relay_id("", BASE, CTX) is None

    def test_generic_src_ignores_assets(self) -> None:
        assert frame_from_generic_src('<img src="/logo.png">', BASE, CTX) is None

    def test_generic_src_html(self) -> None:
        html = """<script>x.src = "/next.html";</script>"""
        assert frame_from_generic_src(html, BASE, CTX) == "http://play.jgdhds.com/next.html"

    def test_chain_order_prefers_iframe_element(self) -> None:
        html = """<iframe src="/a.html"></iframe><script>s.src='/play/b.html'</script>"""
        assert first_match(FRAME_STRATEGIES, html, BASE, CTX) == (
            "http://play.jgdhds.com/a.html"
        )


class TestClassification:
    def test_media_extensions_accepted(self) -> None:
        assert classify_media_url("http://x/a.m3u8?k=1") is Verdict.ACCEPT
        assert classify_media_url("http://x/a.flv") is Verdict.ACCEPT
        assert classify_media_url("http://x/a.mp4") is Verdict.ACCEPT

    def test_html_is_next_hop(self) -> None:
        assert classify_media_url("http://x/player.html?id=1") is Verdict.NEXT_HOP

    def test_other_urls_rejected(self) -> None:
        assert classify_media_url("http://x/track.gif") is Verdict.REJECT

    def test_ad_keywords(self) -> None:
        assert is_ad_url("http://banner.example.com/x.gif")
        assert is_ad_url("http://jrs945.example.com/")
        assert not is_ad_url("http://cdn.example.com/live.gif")


class TestDetection:
    def test_media_type(self) -> None:
        assert detect_media_type("http://x/a.m3u8") == "hls"
        assert detect_media_type("http://x/a.flv") == "flv"
        assert detect_media_type("http://x/a.mp4") == "mp4"
        assert detect_media_type("http://x/a") == "unknown"

    def test_quality(self) -> None:
        assert detect_quality("http://x/1080/play.html") == "高清"
        assert detect_quality("http://x/480/play.html") == "标清"
        assert detect_quality("http://x/play/解说.html") == "解说"
        assert detect_quality("http://x/play/steam1.html") == "标准"
