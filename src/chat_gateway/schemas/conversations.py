"""Pydantic models for the conversation store API."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .chat import Attachment


class ConversationCreate(BaseModel):
    title: Optional[str] = None


class ConversationSummary(BaseModel):
    id: str
    title: Optional[str] = None
    created_at: str = Field(alias="createdAt")
    updated_at: str = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class MessageCreate(BaseModel):
    role: Literal["user", "model"]
    text: str = ""
    attachments: List[Attachment] = Field(default_factory=list)
    image_urls: List[str] = Field(default_factory=list, alias="imageUrls")
    thought_signature: Optional[str] = Field(default=None, alias="thoughtSignature")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class StoredMessage(BaseModel):
    id: int
    conversation_id: str = Field(alias="conversationId")
    role: Literal["user", "model"]
    text: str
    attachments: List[Attachment] = Field(default_factory=list)
    image_urls: List[str] = Field(default_factory=list, alias="imageUrls")
    thought_signature: Optional[str] = Field(default=None, alias="thoughtSignature")
    created_at: str = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)


class ConversationDetail(ConversationSummary):
    messages: List[StoredMessage] = Field(default_factory=list)


__all__ = [
    "ConversationCreate",
    "ConversationDetail",
    "ConversationSummary",
    "MessageCreate",
    "StoredMessage",
]
