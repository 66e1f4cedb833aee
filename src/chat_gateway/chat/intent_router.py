"""Pick a variant for auto-routed turns with one classification call."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from ..gemini import GeminiClient, extract_response_text
from ..schemas.chat import ConversationTurn
from .prompts import ROUTER_PROMPT
from .variants import Variant, routable_variants

logger = logging.getLogger(__name__)

CONTEXT_TURNS = 4
REASON_MAX_CHARS = 50
ROUTER_MAX_OUTPUT_TOKENS = 500
# Stands in for the request text on attachment-only turns
ATTACHMENT_ONLY_REQUEST = "User sent attachment"


@dataclass(frozen=True)
class RoutingDecision:
    selected_variant: Variant
    raw_reason: str


def build_router_prompt(message: str, history: Sequence[ConversationTurn]) -> str:
    context = "\n".join(
        f"{turn.role}: {turn.text}" for turn in history[-CONTEXT_TURNS:]
    )
    request = message.strip() or ATTACHMENT_ONLY_REQUEST
    return f'{ROUTER_PROMPT}\n\nContext:\n{context}\n\nUser Request: "{request}"'


def parse_routing_reply(
    reply: str, candidates: Sequence[Variant] | None = None
) -> Optional[RoutingDecision]:
    """Find a routable variant id in free-form classifier output.

    The earliest occurrence wins; at the same position the longer id wins, so
    an id that contains another is never shadowed by it.
    """

    if not reply:
        return None
    lowered = reply.lower()
    best: Optional[tuple[int, int, Variant]] = None
    for variant in candidates or routable_variants():
        position = lowered.find(variant.value)
        if position < 0:
            continue
        length = len(variant.value)
        if best is None or (position, -length) < (best[0], -best[1]):
            best = (position, length, variant)
    if best is None:
        return None

    position, length, variant = best
    remainder = (reply[:position] + reply[position + length :]).strip()
    reason = remainder.lstrip("-: \t").strip()[:REASON_MAX_CHARS] or "Routed"
    return RoutingDecision(selected_variant=variant, raw_reason=reason)


class IntentRouter:
    def __init__(
        self,
        client: GeminiClient,
        *,
        model: str,
        fallback: Variant = Variant.FLASH,
    ):
        self._client = client
        self._model = model
        self._fallback = fallback

    @property
    def fallback(self) -> Variant:
        return self._fallback

    async def route(
        self, message: str, history: Sequence[ConversationTurn]
    ) -> RoutingDecision:
        body = {
            "contents": [
                {"role": "user", "parts": [{"text": build_router_prompt(message, history)}]}
            ],
            "generationConfig": {
                "temperature": 0,
                "maxOutputTokens": ROUTER_MAX_OUTPUT_TOKENS,
            },
        }
        try:
            response = await self._client.generate(self._model, body)
            reply = extract_response_text(response)
        except Exception:
            logger.warning("Intent routing failed; using %s", self._fallback.value, exc_info=True)
            return RoutingDecision(self._fallback, "fallback")

        decision = parse_routing_reply(reply)
        if decision is None:
            logger.warning(
                "Router reply matched no variant (%r); using %s",
                reply[:80],
                self._fallback.value,
            )
            return RoutingDecision(self._fallback, "fallback")

        logger.info(
            "Routed turn to %s (%s)", decision.selected_variant.value, decision.raw_reason
        )
        return decision


__all__ = [
    "IntentRouter",
    "RoutingDecision",
    "build_router_prompt",
    "parse_routing_reply",
]
