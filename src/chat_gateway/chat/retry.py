"""Re-run empty replies once against a fallback variant."""

from __future__ import annotations

import logging
from typing import AsyncGenerator, Optional

from . import events
from .events import StreamEvent
from .multiplexer import StreamMultiplexer, StreamResult, StreamState, UpstreamRequest
from .variants import RETRY_FALLBACK, Variant, VariantProfile, get_profile

logger = logging.getLogger(__name__)


class RetrySupervisor:
    """Wrap one turn's multiplexed stream with at most one fallback call.

    After iteration ``result`` holds the outcome of the stream that was
    relayed last, and ``attempts`` the number of upstream calls made.
    """

    def __init__(
        self,
        multiplexer: StreamMultiplexer,
        *,
        fallback: Variant = RETRY_FALLBACK,
    ):
        self._multiplexer = multiplexer
        self._fallback = get_profile(fallback)
        self.result: Optional[StreamResult] = None
        self.attempts = 0

    async def stream(
        self, profile: VariantProfile, request: UpstreamRequest
    ) -> AsyncGenerator[StreamEvent, None]:
        primary = StreamResult(profile=profile)
        self.result = primary
        self.attempts = 1
        async for event in self._multiplexer.stream(profile, request, primary):
            yield event

        if not primary.is_empty or not profile.retry_on_empty:
            return
        if self._fallback.variant is profile.variant:
            return

        primary.state = StreamState.RETRY_PENDING
        logger.warning(
            "Empty reply from %s; retrying once with %s",
            profile.upstream_model,
            self._fallback.upstream_model,
        )
        yield events.retry_event(self._fallback.upstream_model)

        fallback = StreamResult(profile=self._fallback)
        self.result = fallback
        self.attempts = 2
        async for event in self._multiplexer.stream(self._fallback, request, fallback):
            yield event

        if fallback.is_empty:
            logger.warning("Fallback %s also returned nothing", self._fallback.upstream_model)


__all__ = ["RetrySupervisor"]
