"""Typed view of upstream response chunks.

Every chunk from ``generateContent``/``streamGenerateContent`` is turned into a
list of fragments here so the rest of the pipeline never touches raw part
dictionaries.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from ..services.images import safe_b64decode, sniff_mime_from_bytes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Source:
    title: str
    url: str

    def to_payload(self) -> dict[str, str]:
        return {"title": self.title, "url": self.url}


@dataclass(frozen=True)
class TextFragment:
    text: str


@dataclass(frozen=True)
class ThoughtFragment:
    text: str


@dataclass(frozen=True)
class ExecutableCodeFragment:
    code: str
    language: str = "python"

    def as_markdown(self) -> str:
        return f"\n```{self.language}\n{self.code}\n```\n"


@dataclass(frozen=True)
class CodeExecutionResultFragment:
    output: str
    outcome: Optional[str] = None


@dataclass(frozen=True)
class InlineDataFragment:
    mime_type: str
    data: bytes
    thought: bool = False


@dataclass(frozen=True)
class GroundingFragment:
    sources: tuple[Source, ...]


@dataclass(frozen=True)
class ContinuityTokenFragment:
    token: str


Fragment = Union[
    TextFragment,
    ThoughtFragment,
    ExecutableCodeFragment,
    CodeExecutionResultFragment,
    InlineDataFragment,
    GroundingFragment,
    ContinuityTokenFragment,
]


# Code execution prints generated charts as data URIs in its stdout.
_EXECUTION_IMAGE_PATTERN = re.compile(
    r"data:image/(png|jpeg|jpg|gif|webp);base64,([A-Za-z0-9+/=]+)"
)


def extract_execution_image(output: str) -> Optional[tuple[str, bytes]]:
    """Pull the first base64 image embedded in code-execution output.

    Returns ``(mime_type, data)`` or ``None`` when no complete, decodable image
    payload is present.
    """

    if not output:
        return None
    match = _EXECUTION_IMAGE_PATTERN.search(output)
    if match is None:
        return None
    subtype, payload = match.groups()
    data = safe_b64decode(payload)
    if not data or sniff_mime_from_bytes(data) is None:
        return None
    if subtype == "jpg":
        subtype = "jpeg"
    return f"image/{subtype}", data


def _parse_part(part: Mapping[str, Any]) -> list[Fragment]:
    fragments: list[Fragment] = []
    is_thought = bool(part.get("thought"))

    text = part.get("text")
    if isinstance(text, str) and text:
        fragments.append(ThoughtFragment(text) if is_thought else TextFragment(text))

    code = part.get("executableCode")
    if isinstance(code, Mapping) and isinstance(code.get("code"), str):
        language = str(code.get("language") or "python").lower()
        fragments.append(ExecutableCodeFragment(code["code"], language))

    result = part.get("codeExecutionResult")
    if isinstance(result, Mapping):
        fragments.append(
            CodeExecutionResultFragment(
                output=str(result.get("output") or ""),
                outcome=result.get("outcome"),
            )
        )

    inline = part.get("inlineData")
    if isinstance(inline, Mapping) and isinstance(inline.get("data"), str):
        data = safe_b64decode(inline["data"])
        if data:
            fragments.append(
                InlineDataFragment(
                    mime_type=str(inline.get("mimeType") or "image/png"),
                    data=data,
                    thought=is_thought,
                )
            )
        else:
            logger.warning("Dropping undecodable inlineData part")

    signature = part.get("thoughtSignature")
    if isinstance(signature, str) and signature:
        fragments.append(ContinuityTokenFragment(signature))

    return fragments


def _parse_grounding(metadata: Any) -> Optional[GroundingFragment]:
    if not isinstance(metadata, Mapping):
        return None
    chunks = metadata.get("groundingChunks")
    if not isinstance(chunks, list):
        return None
    sources: list[Source] = []
    for chunk in chunks:
        web = chunk.get("web") if isinstance(chunk, Mapping) else None
        if not isinstance(web, Mapping) or not web.get("uri"):
            continue
        sources.append(Source(title=web.get("title") or "Web Source", url=web["uri"]))
    if not sources:
        return None
    return GroundingFragment(tuple(sources))


def parse_chunk(chunk: Mapping[str, Any]) -> list[Fragment]:
    """Classify one upstream response chunk into ordered fragments."""

    fragments: list[Fragment] = []
    candidates = chunk.get("candidates")
    candidate = (
        candidates[0]
        if isinstance(candidates, list) and candidates and isinstance(candidates[0], Mapping)
        else {}
    )

    content = candidate.get("content")
    parts = content.get("parts") if isinstance(content, Mapping) else None
    if isinstance(parts, list):
        for part in parts:
            if isinstance(part, Mapping):
                fragments.extend(_parse_part(part))

    grounding = _parse_grounding(chunk.get("groundingMetadata")) or _parse_grounding(
        candidate.get("groundingMetadata")
    )
    if grounding is not None:
        fragments.append(grounding)

    feedback = chunk.get("promptFeedback")
    if isinstance(feedback, Mapping) and feedback.get("blockReason"):
        logger.warning("Upstream blocked the prompt: %s", feedback["blockReason"])

    finish_reason = candidate.get("finishReason")
    if finish_reason and finish_reason not in {"STOP", "MAX_TOKENS"}:
        logger.info("Upstream finished with reason %s", finish_reason)

    return fragments


__all__ = [
    "CodeExecutionResultFragment",
    "ContinuityTokenFragment",
    "ExecutableCodeFragment",
    "Fragment",
    "GroundingFragment",
    "InlineDataFragment",
    "Source",
    "TextFragment",
    "ThoughtFragment",
    "extract_execution_image",
    "parse_chunk",
]
