"""Follow-up question suggestions generated after a reply."""

from __future__ import annotations

import json
import logging

from ..chat.prompts import SUGGESTIONS_PROMPT
from ..gemini import GeminiClient, extract_response_text

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 3
_MAX_CONTEXT_CHARS = 4000


class SuggestionService:
    def __init__(self, client: GeminiClient, *, model: str) -> None:
        self._client = client
        self._model = model

    async def suggest(self, user_message: str, reply: str) -> list[str]:
        """Return up to three follow-ups, or an empty list on any failure."""

        if not reply.strip():
            return []

        conversation = (
            f"user: {user_message[:_MAX_CONTEXT_CHARS]}\n"
            f"model: {reply[:_MAX_CONTEXT_CHARS]}"
        )
        body = {
            "systemInstruction": {"parts": [{"text": SUGGESTIONS_PROMPT}]},
            "contents": [{"role": "user", "parts": [{"text": conversation}]}],
            "generationConfig": {
                "temperature": 0.7,
                "maxOutputTokens": 256,
                "responseMimeType": "application/json",
            },
        }
        try:
            response = await self._client.generate(self._model, body)
            raw = json.loads(extract_response_text(response) or "[]")
        except Exception:
            logger.exception("Failed to generate follow-up suggestions")
            return []

        if not isinstance(raw, list):
            return []
        suggestions = [
            item.strip() for item in raw if isinstance(item, str) and item.strip()
        ]
        return suggestions[:MAX_SUGGESTIONS]


__all__ = ["SuggestionService"]
