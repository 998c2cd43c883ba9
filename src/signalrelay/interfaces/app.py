"""FastAPI application factory (create_app)."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.responses import Response

from signalrelay.infrastructure.config import AppConfig
from signalrelay.interfaces.app_state import AppState
from signalrelay.interfaces.composition import lifespan

log = structlog.get_logger(__name__)


def create_app(config: AppConfig) -> FastAPI:
    """Create FastAPI app - configuration ONLY, NO resource initialization.

    Resources (HTTP client, cache, scheduler) are created in lifespan().
    """
    app = FastAPI(
        title="SignalRelay",
        description="Live stream signal resolution and HLS proxy",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state = AppState()
    app.state.config = config
    app.state.ready = False

    from signalrelay.interfaces.api.domains.router import router as domains_router
    from signalrelay.interfaces.api.proxy.router import router as proxy_router
    from signalrelay.interfaces.api.refresh.router import router as refresh_router
    from signalrelay.interfaces.api.resolve.router import router as resolve_router

    app.include_router(resolve_router)
    app.include_router(proxy_router)
    app.include_router(refresh_router)
    app.include_router(domains_router)

    @app.get("/healthz")
    async def healthz() -> dict[str, str | int]:
        """Liveness probe - returns 200 as long as the process is running."""
        sessions = getattr(app.state, "sessions", None)
        return {"status": "ok", "sessions": len(sessions) if sessions else 0}

    @app.get("/readyz")
    async def readyz() -> Response:
        """Readiness probe - 200 after startup complete, 503 otherwise."""
        if getattr(app.state, "ready", False):
            return JSONResponse({"status": "ready"}, status_code=200)
        return JSONResponse({"status": "not_ready"}, status_code=503)

    @app.middleware("http")
    async def log_requests(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ):
        start = time.perf_counter()
        try:
            response = await call_next(request)
            return response
        finally:
            duration_ms = (time.perf_counter() - start) * 1000.0
            status_code = getattr(locals().get("response", None), "status_code", 500)

            log.info(
                "http_request",
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_ms=round(duration_ms, 2),
                client_host=(request.client.host if request.client else None),
            )

    return app
