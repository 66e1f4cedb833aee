"""Chat orchestrator: one user turn from request to terminal event."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Optional

from ..auth import AuthUser
from ..gemini import GeminiClient, GeminiError
from ..schemas.chat import ChatRequest, ChatSettings
from ..services.dual_sink import DualSinkUploader
from ..services.suggestions import SuggestionService
from . import events, prompts
from .attachments import AttachmentResolver, has_video
from .events import StreamEvent
from .history import HistoryCompactor
from .intent_router import IntentRouter
from .multiplexer import StreamMultiplexer, UpstreamRequest
from .retry import RetrySupervisor
from .variants import RETRY_FALLBACK, Variant, VariantProfile, get_profile

logger = logging.getLogger(__name__)


class EmptyTurnError(ValueError):
    """Raised when a turn has neither text nor attachments."""


@dataclass
class PreparedTurn:
    """A validated turn whose attachments already resolved cleanly."""

    request: ChatRequest
    user: AuthUser
    attachment_parts: list[dict[str, Any]]
    allow_code_execution: bool


def build_system_instruction(
    profile: VariantProfile, settings: ChatSettings, user: AuthUser
) -> Optional[str]:
    sections: list[str] = []
    if profile.honors_preferences and settings.user_name and settings.user_name.strip():
        sections.append(prompts.user_name_line(settings.user_name.strip()))
    if profile.system_prompt:
        sections.append(profile.system_prompt)
    if (
        profile.honors_preferences
        and settings.system_instruction
        and settings.system_instruction.strip()
    ):
        sections.append(prompts.wrap_user_preferences(settings.system_instruction.strip()))
    if user.is_admin and profile.system_prompt:
        sections.append(prompts.ADMIN_ADDENDUM)
    return "\n\n".join(sections) or None


def style_suffix(style: str) -> str:
    label = style.replace("-", " ").replace("_", " ").strip().title()
    return f"\n\nStyle: {label}, high quality, detailed."


def build_user_content(
    turn: PreparedTurn, profile: VariantProfile
) -> dict[str, Any]:
    settings = turn.request.settings
    text = turn.request.new_message
    style = (settings.image_style or "").strip()
    if profile.supports_image_style and style and style.lower() != "none":
        text = f"{text}{style_suffix(style)}"

    parts = list(turn.attachment_parts)
    if text.strip():
        parts.append({"text": text})
    return {"role": "user", "parts": parts}


def safe_error_message(exc: GeminiError) -> str:
    if exc.status_code == 429:
        return "The model is busy right now. Please try again in a moment."
    if exc.status_code in (400, 413):
        return "The model could not process this request."
    if exc.status_code == 504:
        return "The model took too long to respond."
    return "The model provider returned an error."


class ChatOrchestrator:
    """Coordinates routing, history, multiplexing and retry for each turn."""

    def __init__(
        self,
        client: GeminiClient,
        *,
        router: IntentRouter,
        compactor: HistoryCompactor,
        resolver: AttachmentResolver,
        uploader: Optional[DualSinkUploader] = None,
        suggestions: Optional[SuggestionService] = None,
        retry_fallback: Variant = RETRY_FALLBACK,
    ):
        self._client = client
        self._router = router
        self._compactor = compactor
        self._resolver = resolver
        self._uploader = uploader
        self._suggestions = suggestions
        self._retry_fallback = retry_fallback

    def prepare(self, request: ChatRequest, user: AuthUser) -> PreparedTurn:
        """Validate a request before any response bytes are sent.

        Raises ``EmptyTurnError`` or an ``AttachmentError`` subclass.
        """

        if request.is_empty:
            raise EmptyTurnError("Either message text or attachments are required")
        parts = self._resolver.resolve(request.attachments)
        return PreparedTurn(
            request=request,
            user=user,
            attachment_parts=parts,
            allow_code_execution=not has_video(request.attachments),
        )

    async def _select_variant(
        self, turn: PreparedTurn
    ) -> tuple[Variant, Optional[StreamEvent]]:
        request = turn.request
        if not request.is_auto:
            return Variant(request.model_id), None
        decision = await self._router.route(request.new_message, request.history)
        return decision.selected_variant, events.routed_model_event(
            decision.selected_variant.value, decision.raw_reason
        )

    async def stream_turn(
        self, turn: PreparedTurn
    ) -> AsyncGenerator[StreamEvent, None]:
        """Yield every event of one turn, ending with exactly one done or error."""

        request = turn.request
        try:
            variant, routed = await self._select_variant(turn)
            if routed is not None:
                yield routed
            profile = get_profile(variant)

            contents = await self._compactor.compact(request.history, profile)
            contents.append(build_user_content(turn, profile))
            upstream = UpstreamRequest(
                contents=contents,
                system_instruction=build_system_instruction(
                    profile, request.settings, turn.user
                ),
                allow_code_execution=turn.allow_code_execution,
                aspect_ratio=request.settings.aspect_ratio,
            )

            multiplexer = StreamMultiplexer(
                self._client, self._uploader, user_id=turn.user.uid
            )
            supervisor = RetrySupervisor(multiplexer, fallback=self._retry_fallback)
            async for event in supervisor.stream(profile, upstream):
                yield event

            result = supervisor.result
            assert result is not None
            if result.continuity_token:
                yield events.continuity_event(result.continuity_token)

            if (
                request.settings.show_suggestions
                and self._suggestions is not None
                and not result.is_empty
            ):
                suggestions = await self._suggestions.suggest(
                    request.new_message, result.text
                )
                if suggestions:
                    yield events.suggestions_event(suggestions)
        except GeminiError as exc:
            logger.warning(
                "Upstream error for user %s: %s %s",
                turn.user.uid,
                exc.status_code,
                exc.detail,
            )
            yield events.error_event(safe_error_message(exc))
            return
        except Exception:
            logger.exception("Unexpected failure while streaming a turn")
            yield events.error_event("Something went wrong while generating a response.")
            return

        yield events.done_event()


__all__ = [
    "ChatOrchestrator",
    "EmptyTurnError",
    "PreparedTurn",
    "build_system_instruction",
    "build_user_content",
    "safe_error_message",
]
