"""Conversation store routes; deletion schedules the storage cleanup sweep."""

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, Response

from ..auth import AuthUser, require_user
from ..repository import ConversationRepository
from ..schemas.conversations import (
    ConversationCreate,
    ConversationDetail,
    ConversationSummary,
    MessageCreate,
    StoredMessage,
)
from ..services.conversation_cleanup import ConversationCleanupReactor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/conversations", tags=["conversations"])


def get_repository(request: Request) -> ConversationRepository:
    repository = getattr(request.app.state, "conversation_repository", None)
    if repository is None:
        raise HTTPException(status_code=500, detail="Conversation store unavailable")
    return repository


def get_cleanup_reactor(request: Request) -> ConversationCleanupReactor:
    reactor = getattr(request.app.state, "cleanup_reactor", None)
    if reactor is None:
        raise HTTPException(status_code=500, detail="Cleanup service unavailable")
    return reactor


@router.get("", response_model=List[ConversationSummary])
async def list_conversations(
    user: AuthUser = Depends(require_user),
    repository: ConversationRepository = Depends(get_repository),
) -> List[ConversationSummary]:
    records = await repository.list_conversations(user.uid)
    return [ConversationSummary.model_validate(record) for record in records]


@router.post("", response_model=ConversationSummary, status_code=201)
async def create_conversation(
    payload: ConversationCreate,
    user: AuthUser = Depends(require_user),
    repository: ConversationRepository = Depends(get_repository),
) -> ConversationSummary:
    record = await repository.create_conversation(user.uid, title=payload.title)
    return ConversationSummary.model_validate(record)


@router.get("/{conversation_id}", response_model=ConversationDetail)
async def get_conversation(
    conversation_id: str,
    user: AuthUser = Depends(require_user),
    repository: ConversationRepository = Depends(get_repository),
) -> ConversationDetail:
    record = await repository.get_conversation(user.uid, conversation_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    messages = await repository.get_messages(conversation_id, user_id=user.uid)
    return ConversationDetail.model_validate(
        {**record, "messages": [StoredMessage.model_validate(m) for m in messages]}
    )


@router.post(
    "/{conversation_id}/messages", response_model=StoredMessage, status_code=201
)
async def append_message(
    conversation_id: str,
    payload: MessageCreate,
    user: AuthUser = Depends(require_user),
    repository: ConversationRepository = Depends(get_repository),
) -> StoredMessage:
    """Persist a finished turn; inline bytes and fileUri handles are dropped."""

    if await repository.get_conversation(user.uid, conversation_id) is None:
        raise HTTPException(status_code=404, detail="Conversation not found")

    attachments = [
        attachment.for_persistence().model_dump(by_alias=True, exclude_none=True)
        for attachment in payload.attachments
    ]
    record = await repository.add_message(
        user.uid,
        conversation_id,
        payload.role,
        payload.text,
        attachments=attachments,
        image_urls=payload.image_urls,
        thought_signature=payload.thought_signature,
    )
    return StoredMessage.model_validate(record)


@router.delete("/{conversation_id}", status_code=204, response_class=Response)
async def delete_conversation(
    conversation_id: str,
    background_tasks: BackgroundTasks,
    user: AuthUser = Depends(require_user),
    repository: ConversationRepository = Depends(get_repository),
    reactor: ConversationCleanupReactor = Depends(get_cleanup_reactor),
) -> Response:
    deleted = await repository.delete_conversation(user.uid, conversation_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Conversation not found")
    background_tasks.add_task(
        reactor.handle_conversation_deleted, user.uid, conversation_id
    )
    logger.info("Deleted conversation %s; cleanup scheduled", conversation_id)
    return Response(status_code=204)


__all__ = ["router"]
