"""Image byte helpers: decoding, sniffing, dimensions and guarded downloads."""

from __future__ import annotations

import base64
import binascii
import logging
import struct
from typing import Optional
from urllib.parse import unquote_to_bytes, urlparse, urlunparse

import httpx

logger = logging.getLogger(__name__)


MIME_EXTENSION_MAP = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/bmp": "bmp",
    "image/heic": "heic",
}

# (label, width / height)
SUPPORTED_ASPECT_RATIOS: tuple[tuple[str, float], ...] = (
    ("1:1", 1.0),
    ("16:9", 16 / 9),
    ("9:16", 9 / 16),
    ("4:3", 4 / 3),
    ("3:4", 3 / 4),
    ("3:2", 3 / 2),
    ("2:3", 2 / 3),
)
ASPECT_RATIO_TOLERANCE = 0.1


def safe_b64decode(value: str) -> bytes | None:
    if not isinstance(value, str):
        return None
    cleaned = value.strip().replace("\n", "").replace("\r", "")
    padding = len(cleaned) % 4
    if padding:
        cleaned += "=" * (4 - padding)
    try:
        return base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError):
        return None


def decode_data_uri(value: str) -> tuple[bytes | None, str | None]:
    if not isinstance(value, str) or not value.startswith("data:"):
        return None, None

    header, _, data_part = value.partition(",")
    if not data_part:
        return None, None

    meta = header[5:]
    if ";" in meta:
        mime, *params = meta.split(";")
    else:
        mime, params = meta, []

    mime_type = mime or "application/octet-stream"
    if "base64" in {param.lower() for param in params}:
        return safe_b64decode(data_part), mime_type
    return unquote_to_bytes(data_part), mime_type


def decode_inline_payload(value: str) -> bytes | None:
    """Decode raw base64 or a ``data:`` URI."""

    if value.startswith("data:"):
        data, _ = decode_data_uri(value)
        return data
    return safe_b64decode(value)


def sniff_mime_from_bytes(data: bytes) -> str | None:
    """Guess image mime type from magic bytes for common formats."""

    if not data or len(data) < 12:
        return None
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if data.startswith(b"GIF87a") or data.startswith(b"GIF89a"):
        return "image/gif"
    if data.startswith(b"RIFF") and data[8:12] == b"WEBP":
        return "image/webp"
    if data.startswith(b"BM"):
        return "image/bmp"
    return None


def extension_for_mime(mime_type: str) -> str:
    return MIME_EXTENSION_MAP.get(mime_type.lower(), "bin")


def get_image_dimensions(data: bytes) -> Optional[tuple[int, int]]:
    """Read ``(width, height)`` from PNG, JPEG or WebP headers."""

    if len(data) >= 24 and data.startswith(b"\x89PNG\r\n\x1a\n"):
        width, height = struct.unpack(">II", data[16:24])
        return width, height

    if data[:2] == b"\xff\xd8":
        return _jpeg_dimensions(data)

    if len(data) >= 30 and data.startswith(b"RIFF") and data[8:12] == b"WEBP":
        chunk = data[12:16]
        if chunk == b"VP8 ":
            width = struct.unpack("<H", data[26:28])[0] & 0x3FFF
            height = struct.unpack("<H", data[28:30])[0] & 0x3FFF
            return width, height
        if chunk == b"VP8L" and len(data) >= 25:
            bits = struct.unpack("<I", data[21:25])[0]
            return (bits & 0x3FFF) + 1, ((bits >> 14) & 0x3FFF) + 1
        if chunk == b"VP8X":
            width = int.from_bytes(data[24:27], "little") + 1
            height = int.from_bytes(data[27:30], "little") + 1
            return width, height

    return None


def _jpeg_dimensions(data: bytes) -> Optional[tuple[int, int]]:
    offset = 2
    length = len(data)
    while offset + 9 < length:
        if data[offset] != 0xFF:
            offset += 1
            continue
        marker = data[offset + 1]
        # SOF0 (baseline) and SOF2 (progressive)
        if marker in (0xC0, 0xC2):
            height, width = struct.unpack(">HH", data[offset + 5 : offset + 9])
            return width, height
        segment_length = struct.unpack(">H", data[offset + 2 : offset + 4])[0]
        offset += 2 + segment_length
    return None


def calculate_aspect_ratio(data: bytes) -> str:
    """Snap the image's shape to the nearest supported ratio label."""

    dimensions = get_image_dimensions(data)
    if dimensions is None:
        return "1:1"
    width, height = dimensions
    if width <= 0 or height <= 0:
        return "1:1"

    ratio = width / height
    for label, target in SUPPORTED_ASPECT_RATIOS:
        if abs(ratio - target) < ASPECT_RATIO_TOLERANCE:
            return label
    return "16:9" if ratio > 1 else "9:16"


def is_allowed_host(url: str, allowlist: list[str] | None) -> bool:
    """Return True if URL hostname matches the allowlist. Empty allowlist allows all."""

    host = (urlparse(url).hostname or "").lower()
    if not host:
        return False
    if not allowlist:
        return True

    for allowed in allowlist:
        candidate = allowed.strip().lower()
        if not candidate:
            continue
        if host == candidate or host.endswith("." + candidate):
            return True
    return False


def redact_url(url: str) -> str:
    parsed = urlparse(url)
    return urlunparse(parsed._replace(query="", fragment=""))


async def download_image(
    client: httpx.AsyncClient,
    url: str,
    *,
    timeout_seconds: float,
    max_bytes: int,
) -> tuple[bytes, str]:
    """Fetch image bytes with size limit and basic content-type checks."""

    timeout = httpx.Timeout(timeout_seconds, connect=10.0)
    headers = {"Accept": "image/*"}
    async with client.stream("GET", url, timeout=timeout, headers=headers) as resp:
        resp.raise_for_status()

        content_type = resp.headers.get("Content-Type", "").split(";")[0].strip()

        chunks: list[bytes] = []
        total = 0
        async for chunk in resp.aiter_bytes():
            if not chunk:
                continue
            total += len(chunk)
            if total > max_bytes:
                raise ValueError(
                    f"Downloaded image exceeds maximum size of {max_bytes} bytes"
                )
            chunks.append(chunk)

        data = b"".join(chunks)
        mime = content_type
        if not mime.lower().startswith("image/"):
            mime = sniff_mime_from_bytes(data) or ""
        if not mime.lower().startswith("image/"):
            raise ValueError("Fetched content is not a valid image")
        return data, mime


class ImageFetcher:
    """Download display copies of earlier images for re-embedding."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        allowed_hosts: list[str] | None,
        timeout_seconds: float,
        max_bytes: int,
    ):
        self._client = client
        self._allowed_hosts = allowed_hosts
        self._timeout_seconds = timeout_seconds
        self._max_bytes = max_bytes

    async def __call__(self, url: str) -> Optional[tuple[bytes, str]]:
        if not url.lower().startswith(("http://", "https://")):
            return None
        if not is_allowed_host(url, self._allowed_hosts):
            logger.warning("Refusing image download from %s", redact_url(url))
            return None
        try:
            return await download_image(
                self._client,
                url,
                timeout_seconds=self._timeout_seconds,
                max_bytes=self._max_bytes,
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Failed to download image from %s: %s", redact_url(url), exc)
            return None

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = [
    "ImageFetcher",
    "calculate_aspect_ratio",
    "decode_data_uri",
    "decode_inline_payload",
    "download_image",
    "extension_for_mime",
    "get_image_dimensions",
    "is_allowed_host",
    "redact_url",
    "safe_b64decode",
    "sniff_mime_from_bytes",
]
