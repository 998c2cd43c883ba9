"""HLS proxy endpoints (manifest rewriting and segment relay)."""

from __future__ import annotations

from typing import cast

import structlog
from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, Response

from signalrelay.domain.exceptions import NetworkError
from signalrelay.infrastructure.proxy.hls_proxy import ProxiedResource
from signalrelay.interfaces.app_state import AppState

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/proxy", tags=["proxy"])

_PROXY_HEADERS = {
    "Cache-Control": "no-cache",
    "Access-Control-Allow-Origin": "*",
}


def _ok(resource: ProxiedResource) -> Response:
    return Response(
        content=resource.body,
        media_type=resource.content_type,
        headers=_PROXY_HEADERS,
    )


def _upstream_error(error: NetworkError) -> Response:
    """Relay the upstream status and body; transport failures become 502."""
    if error.status is None:
        return JSONResponse(
            status_code=502,
            content={"error": str(error), "url": error.url},
            headers=_PROXY_HEADERS,
        )
    return Response(
        content=error.body,
        status_code=error.status,
        media_type=error.content_type or "text/plain",
        headers=_PROXY_HEADERS,
    )


def _missing_url() -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "missing url parameter"},
        headers=_PROXY_HEADERS,
    )


@router.get("/manifest")
async def proxy_manifest(
    request: Request,
    url: str | None = Query(default=None, description="Upstream manifest URL."),
    session: str = Query(default="", description="Base64 Cookie header."),
    referer: str = Query(default="", description="Base64 player page URL."),
    stream_id: str = Query(default="", alias="streamId"),
) -> Response:
    """Fetch a manifest upstream and rewrite every URI line through the proxy."""
    if not url:
        return _missing_url()
    state = cast(AppState, request.app.state)
    try:
        resource = await state.stream_proxy.manifest(
            url, session=session, referer=referer, stream_id=stream_id
        )
    except NetworkError as e:
        log.warning("proxy_manifest_failed", url=url[:160], status=e.status)
        return _upstream_error(e)
    return _ok(resource)


@router.get("/segment")
async def proxy_segment(
    request: Request,
    url: str | None = Query(default=None, description="Upstream segment URL."),
    session: str = Query(default=""),
    referer: str = Query(default=""),
    stream_id: str = Query(default="", alias="streamId"),
) -> Response:
    """Relay segment bytes; nested manifests come back rewritten."""
    if not url:
        return _missing_url()
    state = cast(AppState, request.app.state)
    try:
        resource = await state.stream_proxy.segment(
            url, session=session, referer=referer, stream_id=stream_id
        )
    except NetworkError as e:
        log.warning("proxy_segment_failed", url=url[:160], status=e.status)
        return _upstream_error(e)
    return _ok(resource)
