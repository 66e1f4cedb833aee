"""Routes for user file uploads and continuity handle re-issue."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from google.api_core.exceptions import NotFound

from ..auth import AuthUser, require_user
from ..chat.attachments import AttachmentError, AttachmentTooLarge, normalize_file_mime
from ..gemini import GeminiError
from ..schemas.uploads import ContinuityRequest, ContinuityResponse, UploadResponse
from ..services.dual_sink import ContinuityUploadError, DualSinkUploader
from ..services.gcs import ObjectStorage, StorageUnavailableError
from ..services.storage_paths import (
    filename_from_blob_name,
    is_user_path,
    sanitize_filename,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/uploads", tags=["uploads"])

_CHUNK_SIZE = 1024 * 1024  # 1 MiB


def get_uploader(request: Request) -> DualSinkUploader:
    uploader = getattr(request.app.state, "dual_sink_uploader", None)
    if uploader is None:
        raise HTTPException(status_code=500, detail="Upload service unavailable")
    return uploader


def get_storage(request: Request) -> ObjectStorage:
    storage = getattr(request.app.state, "object_storage", None)
    if storage is None:
        raise HTTPException(status_code=500, detail="Object storage unavailable")
    return storage


def get_max_upload_bytes(request: Request) -> int:
    settings = getattr(request.app.state, "settings", None)
    if settings is None:
        raise HTTPException(status_code=500, detail="Settings unavailable")
    return settings.uploads_max_size_bytes


async def _read_upload(upload: UploadFile, max_bytes: int) -> bytes:
    size = 0
    chunks: list[bytes] = []
    try:
        while True:
            chunk = await upload.read(_CHUNK_SIZE)
            if not chunk:
                break
            size += len(chunk)
            if size > max_bytes:
                raise AttachmentTooLarge(f"Upload exceeded {max_bytes} bytes limit")
            chunks.append(chunk)
    finally:
        await upload.close()
    return b"".join(chunks)


@router.post("", response_model=UploadResponse, status_code=201)
async def upload_attachment(
    file: UploadFile = File(...),
    user: AuthUser = Depends(require_user),
    uploader: DualSinkUploader = Depends(get_uploader),
    max_bytes: int = Depends(get_max_upload_bytes),
) -> UploadResponse:
    """Store a user file durably and on the File API in one request."""

    try:
        data = await _read_upload(file, max_bytes)
        if not data:
            raise AttachmentError("Uploaded file was empty")
    except AttachmentTooLarge as exc:
        raise HTTPException(status_code=413, detail=str(exc)) from exc
    except AttachmentError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    mime_type = (file.content_type or "application/octet-stream").lower()
    name = file.filename or "file"
    result = await uploader.upload(
        data,
        mime_type,
        user_id=user.uid,
        kind="attachments",
        filename=name,
    )
    if result.failed:
        raise HTTPException(status_code=502, detail="Upload failed")

    return UploadResponse(
        storage_url=result.display_url,
        storage_path=result.storage_path,
        file_uri=result.continuity_uri,
        mime_type=mime_type,
        name=name,
    )


@router.post("/continuity", response_model=ContinuityResponse)
async def issue_continuity_handle(
    payload: ContinuityRequest,
    user: AuthUser = Depends(require_user),
    uploader: DualSinkUploader = Depends(get_uploader),
    storage: ObjectStorage = Depends(get_storage),
) -> ContinuityResponse:
    """Copy a stored file to the File API when its previous handle expired."""

    if not is_user_path(payload.storage_path, user.uid):
        raise HTTPException(status_code=403, detail="Access denied")

    try:
        data = await asyncio.to_thread(storage.download_bytes, payload.storage_path)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail="File not found") from exc
    except StorageUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    mime_type = normalize_file_mime(payload.mime_type)
    name = sanitize_filename(payload.file_name or filename_from_blob_name(payload.storage_path))
    try:
        file_uri = await uploader.reissue_continuity(data, mime_type, name)
    except (GeminiError, ContinuityUploadError) as exc:
        logger.warning("File API re-upload failed: %s", exc)
        raise HTTPException(status_code=502, detail="File processing failed") from exc

    return ContinuityResponse(file_uri=file_uri, mime_type=mime_type)


__all__ = ["router"]
