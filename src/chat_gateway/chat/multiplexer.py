"""Classify upstream fragments and relay them as typed client events."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncGenerator, Optional

from ..gemini import GeminiClient
from ..services.dual_sink import DualSinkResult, DualSinkUploader
from ..services.images import calculate_aspect_ratio
from . import events
from .events import ImagePayload, StreamEvent
from .fragments import (
    CodeExecutionResultFragment,
    ContinuityTokenFragment,
    ExecutableCodeFragment,
    Fragment,
    GroundingFragment,
    InlineDataFragment,
    TextFragment,
    ThoughtFragment,
    extract_execution_image,
    parse_chunk,
)
from .variants import VariantProfile

logger = logging.getLogger(__name__)


class StreamState(str, Enum):
    STREAMING = "streaming"
    RETRY_PENDING = "retry_pending"
    DONE = "done"
    ERROR = "error"


@dataclass
class UpstreamRequest:
    """Conversation content for one turn, independent of the variant."""

    contents: list[dict[str, Any]]
    system_instruction: Optional[str] = None
    allow_code_execution: bool = True
    aspect_ratio: Optional[str] = None

    def body_for(self, profile: VariantProfile) -> dict[str, Any]:
        body: dict[str, Any] = {"contents": self.contents}
        if self.system_instruction:
            body["systemInstruction"] = {"parts": [{"text": self.system_instruction}]}
        tools = profile.tool_config(allow_code_execution=self.allow_code_execution)
        if tools:
            body["tools"] = tools
        config = profile.generation_config(aspect_ratio=self.aspect_ratio)
        if config:
            body["generationConfig"] = config
        return body


@dataclass
class StreamResult:
    """What one multiplexed upstream call produced."""

    profile: VariantProfile
    state: StreamState = StreamState.STREAMING
    text_parts: list[str] = field(default_factory=list)
    continuity_token: Optional[str] = None
    sources_sent: bool = False
    image_count: int = 0

    @property
    def text(self) -> str:
        return "".join(self.text_parts)

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


@dataclass
class _PendingImage:
    task: asyncio.Task[DualSinkResult]
    image: ImagePayload
    kind: str


class StreamMultiplexer:
    """Runs one upstream call and turns its fragments into events.

    Image uploads run as tracked background tasks; their resolution events are
    flushed between fragments and awaited before the stream finishes.
    """

    def __init__(
        self,
        client: GeminiClient,
        uploader: Optional[DualSinkUploader],
        *,
        user_id: str,
    ):
        self._client = client
        self._uploader = uploader
        self._user_id = user_id

    async def stream(
        self,
        profile: VariantProfile,
        request: UpstreamRequest,
        result: StreamResult,
    ) -> AsyncGenerator[StreamEvent, None]:
        body = request.body_for(profile)
        pending: list[_PendingImage] = []
        logger.debug(
            "Starting %s call to %s (%d content turn(s))",
            "streaming" if profile.streaming else "one-shot",
            profile.upstream_model,
            len(request.contents),
        )

        try:
            async for chunk in self._iter_chunks(profile, body):
                for fragment in parse_chunk(chunk):
                    for event in self._handle_fragment(fragment, profile, result, pending):
                        yield event
                for event in self._collect_settled(pending):
                    yield event

            if pending:
                await asyncio.wait([item.task for item in pending])
                for event in self._collect_settled(pending):
                    yield event
        except Exception:
            result.state = StreamState.ERROR
            raise

        result.state = StreamState.DONE
        logger.debug(
            "Finished %s: %d chars, %d image(s)",
            profile.upstream_model,
            len(result.text),
            result.image_count,
        )

    async def _iter_chunks(
        self, profile: VariantProfile, body: dict[str, Any]
    ) -> AsyncGenerator[dict[str, Any], None]:
        if profile.streaming:
            async for chunk in self._client.stream_generate(profile.upstream_model, body):
                yield chunk
        else:
            yield await self._client.generate(profile.upstream_model, body)

    def _handle_fragment(
        self,
        fragment: Fragment,
        profile: VariantProfile,
        result: StreamResult,
        pending: list[_PendingImage],
    ) -> list[StreamEvent]:
        if isinstance(fragment, ThoughtFragment):
            return [events.thinking_event(fragment.text)]

        if isinstance(fragment, TextFragment):
            result.text_parts.append(fragment.text)
            return [events.text_event(fragment.text)]

        if isinstance(fragment, ExecutableCodeFragment):
            logger.debug("Model ran %s code (%d chars)", fragment.language, len(fragment.code))
            block = fragment.as_markdown()
            result.text_parts.append(block)
            return [events.text_event(block)]

        if isinstance(fragment, CodeExecutionResultFragment):
            return self._handle_execution_result(fragment, result)

        if isinstance(fragment, InlineDataFragment):
            if fragment.thought:
                logger.debug("Skipping draft image from thinking")
                return []
            return [self._start_image(fragment, profile, result, pending)]

        if isinstance(fragment, GroundingFragment):
            if result.sources_sent:
                return []
            result.sources_sent = True
            return [events.sources_event([s.to_payload() for s in fragment.sources])]

        if isinstance(fragment, ContinuityTokenFragment):
            result.continuity_token = fragment.token
            return []

        return []

    def _handle_execution_result(
        self, fragment: CodeExecutionResultFragment, result: StreamResult
    ) -> list[StreamEvent]:
        extracted = extract_execution_image(fragment.output)
        if extracted is None:
            logger.debug("Discarding code execution output (%s)", fragment.outcome)
            return []
        mime_type, data = extracted
        result.image_count += 1
        image = ImagePayload(
            id=uuid.uuid4().hex,
            mime_type=mime_type,
            data=data,
            aspect_ratio=calculate_aspect_ratio(data),
        )
        return [events.image_event("graph", image)]

    def _start_image(
        self,
        fragment: InlineDataFragment,
        profile: VariantProfile,
        result: StreamResult,
        pending: list[_PendingImage],
    ) -> StreamEvent:
        result.image_count += 1
        image = ImagePayload(
            id=uuid.uuid4().hex,
            mime_type=fragment.mime_type,
            data=fragment.data,
            aspect_ratio=calculate_aspect_ratio(fragment.data),
        )
        if self._uploader is None:
            return events.image_event(profile.image_event, image)

        task = self._uploader.spawn(
            self._uploader.upload(
                fragment.data,
                fragment.mime_type,
                user_id=self._user_id,
                kind="generated",
            )
        )
        pending.append(_PendingImage(task=task, image=image, kind=profile.image_event))
        image.pending = True
        placeholder = events.image_event(profile.image_event, image)
        image.pending = False
        return placeholder

    def _collect_settled(self, pending: list[_PendingImage]) -> list[StreamEvent]:
        settled = [item for item in pending if item.task.done()]
        resolved: list[StreamEvent] = []
        for item in settled:
            pending.remove(item)
            image = item.image
            outcome = _task_outcome(item.task)
            if outcome is not None:
                image.storage_url = outcome.display_url
                image.file_uri = outcome.continuity_uri
            if outcome is None or outcome.failed:
                logger.warning("Image %s kept as raw bytes only", image.id)
            resolved.append(events.image_event(item.kind, image))
        return resolved


def _task_outcome(task: asyncio.Task[DualSinkResult]) -> Optional[DualSinkResult]:
    if task.cancelled():
        return None
    error = task.exception()
    if error is not None:
        logger.warning("Image upload task failed: %s", error)
        return None
    return task.result()


__all__ = [
    "StreamMultiplexer",
    "StreamResult",
    "StreamState",
    "UpstreamRequest",
]
