"""Streaming chat route."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from sse_starlette.sse import EventSourceResponse

from ..auth import AuthUser, require_user
from ..chat.attachments import AttachmentError, AttachmentTooLarge
from ..chat.orchestrator import ChatOrchestrator, EmptyTurnError
from ..chat.variants import VARIANT_PROFILES
from ..schemas.chat import ChatRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])


def get_orchestrator(request: Request) -> ChatOrchestrator:
    orchestrator = getattr(request.app.state, "chat_orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=500, detail="Chat orchestrator unavailable")
    return orchestrator


@router.post("/chat/stream", response_model=None, status_code=200)
async def stream_chat(
    payload: ChatRequest,
    user: AuthUser = Depends(require_user),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> EventSourceResponse:
    """Stream one chat turn as Server-Sent Events."""

    try:
        turn = orchestrator.prepare(payload, user)
    except EmptyTurnError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except AttachmentTooLarge as exc:
        raise HTTPException(status_code=413, detail=str(exc)) from exc
    except AttachmentError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    async def event_publisher():
        async for event in orchestrator.stream_turn(turn):
            yield event.to_sse()

    return EventSourceResponse(event_publisher())


@router.get("/chat/models")
async def list_models(_: AuthUser = Depends(require_user)) -> dict[str, Any]:
    """Return the selectable variants and their capabilities."""

    return {
        "default": "auto",
        "models": [profile.describe() for profile in VARIANT_PROFILES.values()],
    }


__all__ = ["router"]
