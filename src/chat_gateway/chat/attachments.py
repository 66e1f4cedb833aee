"""Turn client attachments into upstream content parts."""

from __future__ import annotations

import base64
import logging
from typing import Any, Iterable

from ..schemas.chat import Attachment
from ..services.images import decode_inline_payload

logger = logging.getLogger(__name__)


INLINE_MEDIA_PREFIXES: tuple[str, ...] = ("image/", "video/", "audio/")
INLINE_MEDIA_TYPES: frozenset[str] = frozenset({"application/pdf"})
GENERIC_TEXT_MIME = "text/plain"


class AttachmentError(RuntimeError):
    """Base error raised for attachment failures."""


class AttachmentTooLarge(AttachmentError):
    """Raised when inline payloads exceed the per-call ceiling."""


def is_inline_media(mime_type: str) -> bool:
    mime = mime_type.strip().lower()
    return mime.startswith(INLINE_MEDIA_PREFIXES) or mime in INLINE_MEDIA_TYPES


def normalize_file_mime(mime_type: str) -> str:
    """Keep media types; coerce everything else to plain text.

    The code execution sandbox rejects many source-code mime types outright,
    while plain text is always accepted.
    """

    if is_inline_media(mime_type):
        return mime_type.strip().lower()
    return GENERIC_TEXT_MIME


def has_video(attachments: Iterable[Attachment]) -> bool:
    return any(a.mime_type.lower().startswith("video/") for a in attachments)


class AttachmentResolver:
    """Build ``fileData``/``inlineData``/text parts for one upstream call."""

    def __init__(self, *, max_inline_bytes: int):
        self._max_inline_bytes = max_inline_bytes

    def resolve(self, attachments: Iterable[Attachment]) -> list[dict[str, Any]]:
        parts: list[dict[str, Any]] = []
        inline_total = 0

        for attachment in attachments:
            if attachment.continuity_handle:
                parts.append(
                    {
                        "fileData": {
                            "fileUri": attachment.continuity_handle,
                            "mimeType": normalize_file_mime(attachment.mime_type),
                        }
                    }
                )
                continue

            if not attachment.inline_data:
                raise AttachmentError(
                    f"Attachment {attachment.name or attachment.mime_type} has no data"
                )

            data = decode_inline_payload(attachment.inline_data)
            if data is None:
                raise AttachmentError(
                    f"Attachment {attachment.name or attachment.mime_type} is not valid base64"
                )

            if is_inline_media(attachment.mime_type):
                inline_total += len(data)
                if inline_total > self._max_inline_bytes:
                    raise AttachmentTooLarge(
                        f"Inline attachments exceed {self._max_inline_bytes} bytes"
                    )
                parts.append(
                    {
                        "inlineData": {
                            "mimeType": attachment.mime_type.strip().lower(),
                            "data": base64.b64encode(data).decode("ascii"),
                        }
                    }
                )
                continue

            parts.append({"text": _render_text_attachment(attachment, data)})

        logger.debug(
            "Resolved %d attachment part(s), %d inline bytes", len(parts), inline_total
        )
        return parts


def _render_text_attachment(attachment: Attachment, data: bytes) -> str:
    header = f"File: {attachment.name}\n" if attachment.name else "Attached File:\n"
    label = attachment.mime_type.strip().lower() or GENERIC_TEXT_MIME
    body = data.decode("utf-8", errors="replace")
    return f"{header}```{label}\n{body}\n```"


__all__ = [
    "AttachmentError",
    "AttachmentResolver",
    "AttachmentTooLarge",
    "has_video",
    "is_inline_media",
    "normalize_file_mime",
]
