"""Blob naming under user namespaces and path recovery from display URLs."""

from __future__ import annotations

import re
import time
from pathlib import PurePosixPath
from typing import Literal, Optional
from urllib.parse import unquote, urlparse
from uuid import uuid4

SinkKind = Literal["attachments", "generated"]

_filename_pattern = re.compile(r"[^A-Za-z0-9._-]+")


def user_prefix(user_id: str) -> str:
    return f"users/{user_id}/"


def sanitize_filename(name: str | None, *, default: str = "file") -> str:
    """Reduce a filename to ASCII letters, digits, dots, dashes and underscores."""

    safe_name = _filename_pattern.sub("_", name or "").strip("._-")
    return safe_name or default


def make_blob_name(
    user_id: str,
    kind: SinkKind,
    filename: str,
    *,
    upload_id: Optional[str] = None,
    timestamp_ms: Optional[int] = None,
) -> str:
    """Return ``users/{uid}/{kind}/{timestamp}_{upload id}__{safe name}``.

    Objects are written with ``if_generation_match=0``, so the random upload id
    keeps two uploads that share a millisecond from colliding.
    """

    stamp = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    upload_id = upload_id or uuid4().hex
    return str(
        PurePosixPath("users")
        / user_id
        / kind
        / f"{stamp}_{upload_id}__{sanitize_filename(filename)}"
    )


def filename_from_blob_name(blob_name: str) -> str:
    """Recover the sanitised filename from a name built by ``make_blob_name``."""

    tail = blob_name.rsplit("/", 1)[-1]
    return tail.split("__", 1)[1] if "__" in tail else tail


def is_user_path(path: str, user_id: str) -> bool:
    if not user_id or ".." in PurePosixPath(path).parts:
        return False
    return path.startswith(user_prefix(user_id))


def extract_storage_path(url: str) -> Optional[str]:
    """Recover the object path from a display URL.

    Handles Firebase download URLs (``/v0/b/{bucket}/o/{encoded path}``), plain
    or signed bucket URLs (``/{bucket}/{path}``) and ``gs://{bucket}/{path}``.
    """

    if not url:
        return None
    parsed = urlparse(url)

    if parsed.scheme == "gs":
        path = unquote(parsed.path.lstrip("/"))
        return path or None

    if parsed.scheme not in {"http", "https"}:
        return None

    marker = "/o/"
    if parsed.path.startswith("/v0/b/") and marker in parsed.path:
        encoded = parsed.path.split(marker, 1)[1]
        path = unquote(encoded)
        return path or None

    segments = parsed.path.split("/")
    # ['', bucket, *path]
    if len(segments) < 3:
        return None
    path = unquote("/".join(segments[2:]))
    return path or None


__all__ = [
    "SinkKind",
    "extract_storage_path",
    "filename_from_blob_name",
    "is_user_path",
    "make_blob_name",
    "sanitize_filename",
    "user_prefix",
]
