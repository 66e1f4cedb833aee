"""Bound conversation history to what a variant accepts upstream."""

from __future__ import annotations

import base64
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence

from ..schemas.chat import ConversationTurn
from .variants import VariantProfile

logger = logging.getLogger(__name__)

# Marker accepted upstream in place of a real signature for content the
# provider did not issue in this call (re-submitted images).
SKIP_SIGNATURE = "skip_thought_signature_validator"

ImageLoader = Callable[[str], Awaitable[Optional[tuple[bytes, str]]]]


def select_window(
    history: Sequence[ConversationTurn], profile: VariantProfile
) -> list[ConversationTurn]:
    limit = profile.history_limit
    if limit is None:
        return list(history)
    if limit <= 0:
        return []
    return list(history[-limit:])


def select_reembed_targets(
    window: Sequence[ConversationTurn], cap: int
) -> list[tuple[int, int]]:
    """Return ``(turn_index, image_index)`` for the newest ``cap`` model images.

    Newest is counted across the whole window, in original order, so ties
    never reorder.
    """

    if cap <= 0:
        return []
    candidates = [
        (turn_index, image_index)
        for turn_index, turn in enumerate(window)
        if turn.role == "model"
        for image_index, _ in enumerate(turn.image_handles)
    ]
    return candidates[-cap:]


class HistoryCompactor:
    def __init__(
        self,
        load_image: Optional[ImageLoader],
        *,
        max_reembedded_images: int = 8,
    ):
        self._load_image = load_image
        self._max_reembedded_images = max_reembedded_images

    async def compact(
        self, history: Sequence[ConversationTurn], profile: VariantProfile
    ) -> list[dict[str, Any]]:
        window = select_window(history, profile)
        if not profile.reembed_model_images:
            return [
                {"role": turn.role, "parts": [{"text": turn.text}]}
                for turn in window
                if turn.text.strip()
            ]

        targets = set(select_reembed_targets(window, self._max_reembedded_images))
        contents: list[dict[str, Any]] = []
        embedded = 0
        for turn_index, turn in enumerate(window):
            if turn.role != "model":
                if turn.text.strip():
                    contents.append({"role": "user", "parts": [{"text": turn.text}]})
                continue

            parts: list[dict[str, Any]] = []
            for image_index, url in enumerate(turn.image_handles):
                if (turn_index, image_index) not in targets:
                    continue
                part = await self._embed_image(url)
                if part is not None:
                    parts.append(part)
                    embedded += 1

            text_part: dict[str, Any] = {"text": turn.text}
            if profile.echo_continuity:
                text_part["thoughtSignature"] = turn.continuity_token or SKIP_SIGNATURE
            parts.append(text_part)
            contents.append({"role": "model", "parts": parts})

        logger.debug(
            "Compacted %d turn(s) to %d for %s with %d re-embedded image(s)",
            len(history),
            len(contents),
            profile.variant.value,
            embedded,
        )
        return contents

    async def _embed_image(self, url: str) -> Optional[dict[str, Any]]:
        if self._load_image is None:
            return None
        loaded = await self._load_image(url)
        if loaded is None:
            logger.warning("Skipping history image that could not be loaded")
            return None
        data, mime_type = loaded
        return {
            "inlineData": {
                "mimeType": mime_type,
                "data": base64.b64encode(data).decode("ascii"),
            },
            "thoughtSignature": SKIP_SIGNATURE,
        }


__all__ = [
    "HistoryCompactor",
    "ImageLoader",
    "SKIP_SIGNATURE",
    "select_reembed_targets",
    "select_window",
]
