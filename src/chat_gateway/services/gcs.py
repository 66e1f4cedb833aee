"""Google Cloud Storage access for attachment and generated-image blobs."""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from pathlib import Path
from typing import Literal
from urllib.parse import quote

from google.api_core.exceptions import NotFound
from google.cloud import storage
from google.oauth2 import service_account

from ..config import Settings

logger = logging.getLogger(__name__)

FIREBASE_DOWNLOAD_BASE = "https://firebasestorage.googleapis.com/v0/b"


class StorageUnavailableError(RuntimeError):
    """Raised when no storage credentials are configured."""


def _load_credentials(settings: Settings) -> service_account.Credentials | None:
    credentials_path = settings.google_application_credentials
    if credentials_path is None:
        return None

    try:
        resolved_path = Path(credentials_path).expanduser().resolve()
        if not resolved_path.exists():
            return None
        return service_account.Credentials.from_service_account_file(str(resolved_path))
    except (FileNotFoundError, OSError) as e:
        logger.debug("Could not load GCS credentials from %s: %s", credentials_path, e)
        return None


class ObjectStorage:
    """Blocking bucket operations; async callers run them in a worker thread."""

    def __init__(
        self,
        settings: Settings,
        *,
        client: storage.Client | None = None,
    ):
        self._settings = settings
        self._client = client
        self._bucket: storage.Bucket | None = None
        self._url_style: Literal["download_token", "signed"] = settings.storage_url_style
        self._signed_url_ttl: timedelta = settings.signed_url_ttl

    @property
    def bucket_name(self) -> str:
        return self._settings.gcs_bucket_name

    def is_available(self) -> bool:
        if self._client is not None:
            return True
        return _load_credentials(self._settings) is not None

    def _get_client(self) -> storage.Client:
        if self._client is None:
            credentials = _load_credentials(self._settings)
            if credentials is None:
                raise StorageUnavailableError(
                    "GCS credentials not found. Please configure GOOGLE_APPLICATION_CREDENTIALS "
                    "with a valid service account JSON file."
                )
            self._client = storage.Client(
                project=self._settings.gcp_project_id or credentials.project_id,
                credentials=credentials,
            )
        return self._client

    def _get_bucket(self) -> storage.Bucket:
        if self._bucket is None:
            self._bucket = self._get_client().bucket(self.bucket_name)
        return self._bucket

    def upload_file(self, blob_name: str, path: Path, *, content_type: str) -> str:
        """Upload a local file and return its long-lived display URL."""

        blob = self._get_bucket().blob(blob_name)
        token: str | None = None
        if self._url_style == "download_token":
            token = uuid.uuid4().hex
            blob.metadata = {"firebaseStorageDownloadTokens": token}
        # Atomic create: prevent overwriting an existing object
        blob.upload_from_filename(
            str(path),
            content_type=content_type,
            if_generation_match=0,
        )
        if token is not None:
            return self.download_url(blob_name, token)
        return self.sign_get_url(blob_name, expires_delta=self._signed_url_ttl)

    def download_bytes(self, blob_name: str) -> bytes:
        return self._get_bucket().blob(blob_name).download_as_bytes()

    def delete_blob(self, blob_name: str) -> bool:
        """Delete a blob; return False when it was already gone."""

        blob = self._get_bucket().blob(blob_name)
        try:
            blob.delete(if_generation_match=None)
        except NotFound:
            return False
        return True

    def download_url(self, blob_name: str, token: str) -> str:
        encoded = quote(blob_name, safe="")
        return (
            f"{FIREBASE_DOWNLOAD_BASE}/{self.bucket_name}/o/{encoded}"
            f"?alt=media&token={token}"
        )

    def sign_get_url(self, blob_name: str, *, expires_delta: timedelta) -> str:
        """Generate a signed GET URL for the given blob."""

        blob = self._get_bucket().blob(blob_name)
        return blob.generate_signed_url(
            version="v4",
            expiration=expires_delta,
            method="GET",
        )


__all__ = ["ObjectStorage", "StorageUnavailableError"]
