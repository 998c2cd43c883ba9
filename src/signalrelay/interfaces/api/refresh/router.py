"""Forced refresh and scheduler status."""

from __future__ import annotations

from typing import cast

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from signalrelay.interfaces.app_state import AppState

router = APIRouter(prefix="/refresh", tags=["refresh"])


class RefreshRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    match_key: str = Field(alias="matchKey", min_length=1)
    entry_url: str | None = Field(default=None, alias="entryUrl")


@router.post("")
async def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Re-resolve every mapping of a match now, bypassing the interval."""
    state = cast(AppState, request.app.state)
    report = await state.refresh_uc.execute(body.match_key, entry_url=body.entry_url)
    return JSONResponse(content={"success": report.succeeded > 0, **report.to_dict()})


@router.get("/status")
async def refresh_status(request: Request) -> JSONResponse:
    state = cast(AppState, request.app.state)
    return JSONResponse(content=state.refresh_scheduler.status())
