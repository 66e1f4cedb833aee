"""Pydantic models for upload endpoints."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class UploadResponse(BaseModel):
    storage_url: Optional[str] = Field(default=None, alias="storageUrl")
    storage_path: Optional[str] = Field(default=None, alias="storagePath")
    file_uri: Optional[str] = Field(default=None, alias="fileUri")
    mime_type: str = Field(alias="mimeType")
    name: str

    model_config = ConfigDict(populate_by_name=True)


class ContinuityRequest(BaseModel):
    storage_path: str = Field(alias="storagePath", min_length=1)
    mime_type: str = Field(alias="mimeType", min_length=1)
    file_name: Optional[str] = Field(default=None, alias="fileName")

    model_config = ConfigDict(populate_by_name=True)


class ContinuityResponse(BaseModel):
    file_uri: str = Field(alias="fileUri")
    mime_type: str = Field(alias="mimeType")

    model_config = ConfigDict(populate_by_name=True)


__all__ = ["ContinuityRequest", "ContinuityResponse", "UploadResponse"]
