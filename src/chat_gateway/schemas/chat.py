"""Pydantic models for chat turns, attachments and stream requests."""

from __future__ import annotations

from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..chat.variants import Variant


class Attachment(BaseModel):
    """A file attached to a turn.

    ``data`` carries inline base64 bytes, ``storageUrl`` is the durable display
    copy and ``fileUri`` the provider continuity handle.
    """

    mime_type: str = Field(alias="mimeType", min_length=1)
    inline_data: Optional[str] = Field(default=None, alias="data")
    display_handle: Optional[str] = Field(default=None, alias="storageUrl")
    continuity_handle: Optional[str] = Field(default=None, alias="fileUri")
    name: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @property
    def has_upstream_source(self) -> bool:
        return bool(self.inline_data or self.continuity_handle)

    def for_persistence(self) -> "Attachment":
        """Drop inline bytes and the expiring continuity handle."""

        return self.model_copy(update={"inline_data": None, "continuity_handle": None})


class ConversationTurn(BaseModel):
    role: Literal["user", "model"]
    text: str = ""
    attachments: List[Attachment] = Field(default_factory=list)
    image_handles: List[str] = Field(default_factory=list, alias="imageUrls")
    continuity_token: Optional[str] = Field(default=None, alias="thoughtSignature")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ChatSettings(BaseModel):
    system_instruction: Optional[str] = Field(default=None, alias="systemInstruction")
    user_name: Optional[str] = Field(default=None, alias="userName")
    aspect_ratio: Optional[str] = Field(default=None, alias="aspectRatio")
    image_style: Optional[str] = Field(default=None, alias="imageStyle")
    show_suggestions: bool = Field(default=False, alias="showSuggestions")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ChatRequest(BaseModel):
    """Incoming streaming chat request payload."""

    history: List[ConversationTurn] = Field(default_factory=list)
    new_message: str = Field(default="", alias="newMessage")
    attachments: List[Attachment] = Field(default_factory=list)
    model_id: Union[Variant, Literal["auto"]] = Field(default="auto", alias="modelId")
    settings: ChatSettings = Field(default_factory=ChatSettings)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("attachments")
    @classmethod
    def _require_upstream_source(cls, value: List[Attachment]) -> List[Attachment]:
        for attachment in value:
            if not attachment.has_upstream_source:
                raise ValueError(
                    "Each attachment needs inline data or a fileUri"
                )
        return value

    @property
    def is_auto(self) -> bool:
        return self.model_id == "auto"

    @property
    def is_empty(self) -> bool:
        return not self.new_message.strip() and not self.attachments


__all__ = [
    "Attachment",
    "ChatRequest",
    "ChatSettings",
    "ConversationTurn",
]
