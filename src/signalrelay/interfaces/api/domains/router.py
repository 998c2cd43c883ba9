"""Operator endpoints: host health and mapping statistics."""

from __future__ import annotations

from typing import Literal, cast

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from signalrelay.domain.entities import HostStatus
from signalrelay.domain.exceptions import StoreError
from signalrelay.interfaces.app_state import AppState

router = APIRouter(tags=["domains"])


class StatusUpdate(BaseModel):
    status: Literal["active", "inactive"]


@router.get("/domains")
async def list_domains(request: Request) -> JSONResponse:
    """Current DomainHealth of every known host, keyed by host."""
    state = cast(AppState, request.app.state)
    return JSONResponse(content={"domains": state.ranker.snapshot()})


@router.post("/domains/{host}/status")
async def set_domain_status(
    request: Request, host: str, body: StatusUpdate
) -> JSONResponse:
    """Activate or deactivate a host; reactivation resets its counters."""
    state = cast(AppState, request.app.state)
    health = state.ranker.set_status(host, HostStatus(body.status))
    snapshot = state.ranker.snapshot()[health.host]
    return JSONResponse(content={"host": health.host, **snapshot})


@router.get("/mappings/stats")
async def mapping_stats(request: Request) -> JSONResponse:
    state = cast(AppState, request.app.state)
    try:
        stats = await state.mapping_store.stats()
    except StoreError as e:
        return JSONResponse(status_code=503, content={"error": str(e)})
    return JSONResponse(content=stats)
