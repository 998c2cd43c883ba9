"""Resolution endpoint: match key in, playable signals out."""

from __future__ import annotations

from typing import Any, cast

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from signalrelay.domain.entities import ResolveOutcome
from signalrelay.domain.exceptions import ExhaustedError
from signalrelay.interfaces.app_state import AppState

log = structlog.get_logger(__name__)

router = APIRouter(tags=["resolve"])


class ResolveRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    match_key: str = Field(alias="matchKey", min_length=1)
    preferred_channel_index: int | None = Field(
        default=None, alias="preferredChannelIndex"
    )
    entry_url: str | None = Field(default=None, alias="entryUrl")


def _present(outcome: ResolveOutcome) -> dict[str, Any]:
    top = outcome.signals[0]
    return {
        "success": True,
        "matchKey": outcome.match_key,
        "mediaUrl": top.media_url,
        "mediaType": top.media_type,
        "candidatesTried": outcome.candidates_tried,
        "mappingUsed": outcome.mapping_used.to_dict() if outcome.mapping_used else None,
        "signals": [s.to_dict() for s in outcome.signals],
    }


@router.post("/resolve")
async def resolve(request: Request, body: ResolveRequest) -> JSONResponse:
    """Resolve a match key into every distinct playable signal.

    Returns 502 when every candidate failed.
    """
    state = cast(AppState, request.app.state)
    try:
        outcome = await state.resolve_uc.execute(
            body.match_key,
            preferred_channel_index=body.preferred_channel_index,
            entry_url=body.entry_url,
        )
    except ExhaustedError as e:
        log.warning("resolve_exhausted", match_key=body.match_key, attempts=e.attempts)
        return JSONResponse(
            status_code=502,
            content={
                "success": False,
                "matchKey": body.match_key,
                "error": str(e),
                "candidatesTried": e.attempts,
            },
        )
    return JSONResponse(content=_present(outcome))
