"""Concurrent writes of one payload to object storage and the Gemini File API."""

from __future__ import annotations

import asyncio
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Coroutine, Optional

from ..chat.attachments import normalize_file_mime
from ..gemini import GeminiClient
from ..schemas.chat import Attachment
from .gcs import ObjectStorage
from .images import extension_for_mime
from .storage_paths import SinkKind, make_blob_name

logger = logging.getLogger(__name__)


class ContinuityUploadError(RuntimeError):
    """Raised when the File API copy could not be produced."""


@dataclass
class DualSinkResult:
    storage_path: Optional[str] = None
    display_url: Optional[str] = None
    continuity_uri: Optional[str] = None
    storage_error: Optional[BaseException] = None
    continuity_error: Optional[BaseException] = None

    @property
    def complete(self) -> bool:
        return bool(self.display_url and self.continuity_uri)

    @property
    def failed(self) -> bool:
        return not self.display_url and not self.continuity_uri

    def apply_to(self, attachment: Attachment) -> Attachment:
        """Upgrade an attachment with whichever handles were obtained.

        Inline bytes are only released once a continuity handle can stand in
        for them upstream.
        """

        update: dict[str, Any] = {}
        if self.display_url:
            update["display_handle"] = self.display_url
        if self.continuity_uri:
            update["continuity_handle"] = self.continuity_uri
            update["inline_data"] = None
        return attachment.model_copy(update=update)


class DualSinkUploader:
    def __init__(self, storage: ObjectStorage, client: GeminiClient):
        self._storage = storage
        self._client = client
        self._tasks: set[asyncio.Task[Any]] = set()

    async def upload(
        self,
        data: bytes,
        mime_type: str,
        *,
        user_id: str,
        kind: SinkKind,
        filename: Optional[str] = None,
    ) -> DualSinkResult:
        name = filename or f"{kind}.{extension_for_mime(mime_type)}"
        blob_name = make_blob_name(user_id, kind, name)

        temp_path = await asyncio.to_thread(_write_temp_file, data, Path(name).suffix)
        try:
            storage_outcome, continuity_outcome = await asyncio.gather(
                asyncio.to_thread(
                    self._storage.upload_file,
                    blob_name,
                    temp_path,
                    content_type=mime_type,
                ),
                self._upload_continuity(temp_path, mime_type, name),
                return_exceptions=True,
            )
        finally:
            temp_path.unlink(missing_ok=True)

        result = DualSinkResult()
        if isinstance(storage_outcome, BaseException):
            result.storage_error = storage_outcome
            logger.warning(
                "Storage upload failed for %s: %s", blob_name, storage_outcome
            )
        else:
            result.storage_path = blob_name
            result.display_url = storage_outcome

        if isinstance(continuity_outcome, BaseException):
            result.continuity_error = continuity_outcome
            logger.warning(
                "File API upload failed for %s: %s", blob_name, continuity_outcome
            )
        else:
            result.continuity_uri = continuity_outcome

        logger.debug(
            "Dual-sink upload %s: storage=%s continuity=%s",
            blob_name,
            result.display_url is not None,
            result.continuity_uri is not None,
        )
        return result

    async def _upload_continuity(self, path: Path, mime_type: str, name: str) -> str:
        uploaded = await self._client.upload_file(
            path,
            mime_type=normalize_file_mime(mime_type),
            display_name=name,
        )
        active = await self._client.wait_until_active(uploaded)
        if not active.uri:
            raise ContinuityUploadError(f"File {active.name} has no URI")
        return active.uri

    async def reissue_continuity(self, data: bytes, mime_type: str, name: str) -> str:
        """Upload stored bytes to the File API only and return the new handle."""

        temp_path = await asyncio.to_thread(_write_temp_file, data, Path(name).suffix)
        try:
            return await self._upload_continuity(temp_path, mime_type, name)
        finally:
            temp_path.unlink(missing_ok=True)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        """Run an upload as a tracked task that outlives the request."""

        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float = 30.0) -> None:
        """Wait for in-flight uploads, used on shutdown."""

        if not self._tasks:
            return
        logger.info("Waiting for %d in-flight upload(s)", len(self._tasks))
        _, still_running = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning("Cancelled %d upload(s) after %.0fs", len(still_running), timeout)


def _write_temp_file(data: bytes, suffix: str) -> Path:
    with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as handle:
        handle.write(data)
    return Path(handle.name)


__all__ = ["ContinuityUploadError", "DualSinkResult", "DualSinkUploader"]
