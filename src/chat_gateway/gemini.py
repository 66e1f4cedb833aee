"""Gemini REST client: streaming generation, one-shot calls and the File API."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncGenerator, Iterable, Optional

import httpx
from fastapi import status

from .config import Settings

logger = logging.getLogger(__name__)


class GeminiError(Exception):
    """Wrap transport or API failures when communicating with Gemini."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


@dataclass
class ServerSentEvent:
    """Represents a parsed Server-Sent Event."""

    data: str
    event: str = "message"
    event_id: Optional[str] = None


@dataclass
class UploadedFile:
    """File API resource returned after an upload."""

    name: str
    uri: str
    mime_type: str
    state: str

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "UploadedFile":
        return cls(
            name=str(payload.get("name") or ""),
            uri=str(payload.get("uri") or ""),
            mime_type=str(payload.get("mimeType") or ""),
            state=str(payload.get("state") or "STATE_UNSPECIFIED"),
        )


class GeminiClient:
    """Client owning one pooled HTTP connection to the Gemini API.

    A single instance is created by the application factory and handed to
    every component that talks to the provider.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._settings = settings
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client

        async with self._client_lock:
            if self._client is None:
                timeout = httpx.Timeout(self._settings.request_timeout, connect=10.0)
                limits = httpx.Limits(
                    max_connections=50,
                    max_keepalive_connections=20,
                )
                self._client = httpx.AsyncClient(
                    timeout=timeout,
                    limits=limits,
                    http2=self._transport is None,
                    transport=self._transport,
                )
        return self._client

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "x-goog-api-key": self._settings.gemini_api_key.get_secret_value(),
            "Content-Type": "application/json",
        }

    @property
    def _base_url(self) -> str:
        """Return the API base URL without a trailing slash."""

        return str(self._settings.gemini_base_url).rstrip("/")

    @property
    def _upload_url(self) -> str:
        return str(self._settings.gemini_upload_url).rstrip("/")

    async def stream_generate(
        self, model: str, body: dict[str, Any]
    ) -> AsyncGenerator[dict[str, Any], None]:
        """Yield each JSON chunk of a ``streamGenerateContent`` response."""

        url = f"{self._base_url}/models/{model}:streamGenerateContent"
        headers = dict(self._headers)
        headers["Accept"] = "text/event-stream"

        client = await self._get_http_client()
        try:
            async with client.stream(
                "POST",
                url,
                params={"alt": "sse"},
                headers=headers,
                json=body,
            ) as response:
                if response.status_code >= 400:
                    raw = await response.aread()
                    detail = self._extract_error_detail(raw)
                    raise GeminiError(response.status_code, detail)

                async for event in self._iter_events(response):
                    if not event.data:
                        continue
                    try:
                        chunk = json.loads(event.data)
                    except json.JSONDecodeError:
                        logger.warning(
                            "Skipping undecodable stream chunk from %s", model
                        )
                        continue
                    if isinstance(chunk, dict):
                        if "error" in chunk:
                            raise GeminiError(
                                status.HTTP_502_BAD_GATEWAY, chunk["error"]
                            )
                        yield chunk
        except httpx.HTTPError as exc:
            raise GeminiError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

    async def generate(self, model: str, body: dict[str, Any]) -> dict[str, Any]:
        """Run a single non-streaming ``generateContent`` call."""

        url = f"{self._base_url}/models/{model}:generateContent"
        client = await self._get_http_client()
        try:
            response = await client.post(url, headers=self._headers, json=body)
        except httpx.HTTPError as exc:
            raise GeminiError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        if response.status_code >= 400:
            raise GeminiError(
                response.status_code, self._extract_error_detail(response.content)
            )

        try:
            payload = response.json()
        except ValueError as exc:  # pragma: no cover - unexpected payload
            raise GeminiError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc
        if not isinstance(payload, dict):
            raise GeminiError(
                status.HTTP_502_BAD_GATEWAY, "Unexpected generateContent payload"
            )
        return payload

    async def upload_file(
        self,
        path: Path,
        *,
        mime_type: str,
        display_name: str,
    ) -> UploadedFile:
        """Upload a local file to the File API with the resumable protocol."""

        data = await asyncio.to_thread(path.read_bytes)
        size = len(data)
        api_key = self._settings.gemini_api_key.get_secret_value()
        client = await self._get_http_client()
        try:
            start = await client.post(
                self._upload_url,
                headers={
                    "x-goog-api-key": api_key,
                    "X-Goog-Upload-Protocol": "resumable",
                    "X-Goog-Upload-Command": "start",
                    "X-Goog-Upload-Header-Content-Length": str(size),
                    "X-Goog-Upload-Header-Content-Type": mime_type,
                    "Content-Type": "application/json",
                },
                json={"file": {"display_name": display_name}},
            )
            if start.status_code >= 400:
                raise GeminiError(
                    start.status_code, self._extract_error_detail(start.content)
                )
            session_url = start.headers.get("x-goog-upload-url")
            if not session_url:
                raise GeminiError(
                    status.HTTP_502_BAD_GATEWAY, "File API did not return an upload URL"
                )

            response = await client.post(
                session_url,
                headers={
                    "X-Goog-Upload-Command": "upload, finalize",
                    "X-Goog-Upload-Offset": "0",
                    "Content-Length": str(size),
                },
                content=data,
            )
        except httpx.HTTPError as exc:
            raise GeminiError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        if response.status_code >= 400:
            raise GeminiError(
                response.status_code, self._extract_error_detail(response.content)
            )
        payload = response.json()
        file_payload = payload.get("file") if isinstance(payload, dict) else None
        if not isinstance(file_payload, dict):
            raise GeminiError(
                status.HTTP_502_BAD_GATEWAY, "File API response missing file"
            )
        return UploadedFile.from_payload(file_payload)

    async def get_file(self, name: str) -> UploadedFile:
        """Fetch the current state of a File API resource (``files/...``)."""

        client = await self._get_http_client()
        try:
            response = await client.get(
                f"{self._base_url}/{name}", headers=self._headers
            )
        except httpx.HTTPError as exc:
            raise GeminiError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        if response.status_code >= 400:
            raise GeminiError(
                response.status_code, self._extract_error_detail(response.content)
            )
        return UploadedFile.from_payload(response.json())

    async def wait_until_active(self, uploaded: UploadedFile) -> UploadedFile:
        """Poll a processing file until it becomes ``ACTIVE``."""

        current = uploaded
        attempts = 0
        while current.state == "PROCESSING":
            if attempts >= self._settings.file_active_max_attempts:
                raise GeminiError(
                    status.HTTP_504_GATEWAY_TIMEOUT,
                    f"File {current.name} did not finish processing",
                )
            attempts += 1
            await asyncio.sleep(self._settings.file_active_poll_seconds)
            current = await self.get_file(current.name)

        if current.state == "FAILED":
            raise GeminiError(
                status.HTTP_502_BAD_GATEWAY, f"File {current.name} failed processing"
            )
        return current

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _iter_events(
        self, response: httpx.Response
    ) -> AsyncGenerator[ServerSentEvent, None]:
        buffer: list[str] = []
        async for line in response.aiter_lines():
            if not line:
                if buffer:
                    yield self._parse_event(buffer)
                    buffer.clear()
                continue
            if line.startswith(":"):
                continue
            buffer.append(line)
        if buffer:
            yield self._parse_event(buffer)

    def _parse_event(self, lines: Iterable[str]) -> ServerSentEvent:
        event_name: Optional[str] = None
        event_id: Optional[str] = None
        data_lines: list[str] = []

        for line in lines:
            field, _, value = line.partition(":")
            value = value.lstrip(" ")
            if field == "event":
                event_name = value or None
            elif field == "data":
                data_lines.append(value)
            elif field == "id":
                event_id = value or None

        return ServerSentEvent(
            data="\n".join(data_lines), event=event_name or "message", event_id=event_id
        )

    @staticmethod
    def _extract_error_detail(raw: bytes) -> Any:
        if not raw:
            return "Gemini returned an empty error response."
        text = raw.decode("utf-8", errors="ignore")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return text
        if isinstance(payload, dict):
            error = payload.get("error")
            if isinstance(error, dict) and error.get("message"):
                return error["message"]
        return payload


def extract_response_text(payload: dict[str, Any]) -> str:
    """Join the non-thought text parts of a ``generateContent`` response."""

    candidates = payload.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return ""
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return ""
    fragments = [
        part["text"]
        for part in parts
        if isinstance(part, dict)
        and isinstance(part.get("text"), str)
        and not part.get("thought")
    ]
    return "".join(fragments).strip()


__all__ = [
    "GeminiClient",
    "GeminiError",
    "ServerSentEvent",
    "UploadedFile",
    "extract_response_text",
]
