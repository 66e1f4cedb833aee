"""Client-facing stream events and their SSE encoding."""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

SseEvent = dict[str, Optional[str]]


class EventKind(str, Enum):
    TEXT = "text"
    THINKING = "thinking"
    IMAGE = "image"
    GRAPH = "graph"
    SOURCES = "sources"
    ROUTED_MODEL = "routedModel"
    CONTINUITY_TOKEN = "thoughtSignature"
    SUGGESTIONS = "suggestions"
    RETRY = "retry"
    ERROR = "error"
    DONE = "done"


TERMINAL_KINDS = frozenset({EventKind.DONE, EventKind.ERROR})


@dataclass(frozen=True)
class StreamEvent:
    kind: EventKind
    payload: Any

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_KINDS

    def to_json(self) -> str:
        return json.dumps({self.kind.value: self.payload}, ensure_ascii=False)

    def to_sse(self) -> SseEvent:
        return {"data": self.to_json()}


@dataclass
class ImagePayload:
    """Body of an ``image``/``graph`` event.

    ``pending`` marks the placeholder sent before the storage upload settles;
    the follow-up event with the same ``id`` carries the resolved handles.
    """

    id: str
    mime_type: str
    data: bytes
    aspect_ratio: str
    storage_url: Optional[str] = None
    file_uri: Optional[str] = None
    pending: bool = False

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "mimeType": self.mime_type,
            "data": base64.b64encode(self.data).decode("ascii"),
            "aspectRatio": self.aspect_ratio,
            "pending": self.pending,
        }
        if self.storage_url:
            payload["storageUrl"] = self.storage_url
        if self.file_uri:
            payload["fileUri"] = self.file_uri
        return payload


def text_event(text: str) -> StreamEvent:
    return StreamEvent(EventKind.TEXT, text)


def thinking_event(text: str) -> StreamEvent:
    return StreamEvent(EventKind.THINKING, text)


def image_event(kind: str, image: ImagePayload) -> StreamEvent:
    return StreamEvent(EventKind(kind), image.to_payload())


def sources_event(sources: list[dict[str, str]]) -> StreamEvent:
    return StreamEvent(EventKind.SOURCES, sources)


def routed_model_event(variant: str, reason: str) -> StreamEvent:
    return StreamEvent(EventKind.ROUTED_MODEL, {"model": variant, "reason": reason})


def continuity_event(token: str) -> StreamEvent:
    return StreamEvent(EventKind.CONTINUITY_TOKEN, token)


def suggestions_event(suggestions: list[str]) -> StreamEvent:
    return StreamEvent(EventKind.SUGGESTIONS, suggestions)


def retry_event(model: str) -> StreamEvent:
    return StreamEvent(EventKind.RETRY, {"model": model})


def error_event(message: str) -> StreamEvent:
    return StreamEvent(EventKind.ERROR, {"message": message})


def done_event() -> StreamEvent:
    return StreamEvent(EventKind.DONE, True)


__all__ = [
    "EventKind",
    "ImagePayload",
    "SseEvent",
    "StreamEvent",
    "TERMINAL_KINDS",
    "continuity_event",
    "done_event",
    "error_event",
    "image_event",
    "retry_event",
    "routed_model_event",
    "sources_event",
    "suggestions_event",
    "text_event",
    "thinking_event",
]
