"""Single-document fetch shared by discovery and the page resolver."""

from __future__ import annotations

import httpx
import structlog

from signalrelay.domain.entities import CookieJar
from signalrelay.domain.exceptions import NetworkError

log = structlog.get_logger(__name__)

_ACCEPT_HTML = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
_ACCEPT_LANGUAGE = "zh-CN,zh;q=0.9,en;q=0.8"


def page_headers(user_agent: str, referer: str, jar: CookieJar | None) -> dict[str, str]:
    headers = {
        "User-Agent": user_agent,
        "Accept": _ACCEPT_HTML,
        "Accept-Language": _ACCEPT_LANGUAGE,
    }
    if referer:
        headers["Referer"] = referer
    if jar:
        headers["Cookie"] = jar.header()
    return headers


async def fetch_document(
    http_client: httpx.AsyncClient,
    url: str,
    *,
    user_agent: str,
    referer: str = "",
    jar: CookieJar | None = None,
    timeout: float = 8.0,
) -> tuple[str, str]:
    """GET *url* and return ``(text, final_url)``.

    ``Set-Cookie`` headers of the response and of every redirect in
    between are stored into *jar*.

    Raises:
        NetworkError: transport failure or any non-2xx status (403
            included), with the upstream status and body attached.
    """
    try:
        resp = await http_client.get(
            url,
            headers=page_headers(user_agent, referer, jar),
            follow_redirects=True,
            timeout=timeout,
        )
    except httpx.HTTPError as e:
        log.warning("page_fetch_failed", url=url, error=str(e))
        raise NetworkError(f"fetch failed for {url}: {e}", url=url) from e

    if jar is not None:
        for response in (*resp.history, resp):
            jar.store(response.headers.get_list("set-cookie"))

    if not resp.is_success:
        log.warning("page_http_error", url=url, status=resp.status_code)
        raise NetworkError(
            f"upstream returned {resp.status_code} for {url}",
            url=url,
            status=resp.status_code,
            body=resp.content,
            content_type=resp.headers.get("content-type"),
        )
    return resp.text, str(resp.url)
