"""Application configuration using environment variables."""

from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    gemini_api_key: SecretStr = Field(
        ...,
        validation_alias=AliasChoices("GEMINI_API_KEY", "gemini_api_key"),
    )
    gemini_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl(
            "https://generativelanguage.googleapis.com/v1beta"
        ),
        validation_alias=AliasChoices("GEMINI_BASE_URL", "base_url"),
    )
    gemini_upload_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl(
            "https://generativelanguage.googleapis.com/upload/v1beta/files"
        ),
        validation_alias=AliasChoices("GEMINI_UPLOAD_URL", "upload_url"),
    )
    request_timeout: float = Field(
        default=120.0,
        validation_alias=AliasChoices("GEMINI_TIMEOUT", "timeout"),
        ge=1,
    )

    # Intent routing
    router_model: str = Field(
        default="gemini-3-flash-preview",
        validation_alias=AliasChoices("ROUTER_MODEL", "router_model"),
    )
    router_fallback_variant: str = Field(
        default="gemini-3-flash-preview",
        validation_alias=AliasChoices(
            "ROUTER_FALLBACK_VARIANT", "router_fallback_variant"
        ),
    )
    suggestions_model: str = Field(
        default="gemini-2.5-flash-lite",
        validation_alias=AliasChoices("SUGGESTIONS_MODEL", "suggestions_model"),
    )

    # Upstream payload limits
    inline_payload_max_bytes: int = Field(
        default=20 * 1024 * 1024,
        ge=1,
        validation_alias=AliasChoices(
            "INLINE_PAYLOAD_MAX_BYTES", "inline_payload_max_bytes"
        ),
    )
    max_reembedded_images: int = Field(
        default=8,
        ge=0,
        validation_alias=AliasChoices(
            "MAX_REEMBEDDED_IMAGES", "max_reembedded_images"
        ),
    )
    file_active_poll_seconds: float = Field(
        default=2.0,
        gt=0,
        validation_alias=AliasChoices(
            "FILE_ACTIVE_POLL_SECONDS", "file_active_poll_seconds"
        ),
    )
    file_active_max_attempts: int = Field(
        default=60,
        ge=1,
        validation_alias=AliasChoices(
            "FILE_ACTIVE_MAX_ATTEMPTS", "file_active_max_attempts"
        ),
    )

    chat_database_path: Path = Field(
        default_factory=lambda: Path("data/conversations.db"),
        validation_alias=AliasChoices("CHAT_DATABASE_PATH", "chat_db"),
    )

    uploads_max_size_bytes: int = Field(
        default=50 * 1024 * 1024,
        ge=1,
        validation_alias=AliasChoices(
            "UPLOADS_MAX_SIZE_BYTES",
            "uploads_max_size_bytes",
        ),
    )
    gcs_bucket_name: str = Field(
        default="chat-gateway",
        validation_alias=AliasChoices("GCS_BUCKET_NAME", "gcs_bucket_name"),
    )
    gcp_project_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GCP_PROJECT_ID", "gcp_project_id"),
    )
    google_application_credentials: Optional[Path] = Field(
        default=None,
        validation_alias=AliasChoices(
            "GOOGLE_APPLICATION_CREDENTIALS",
            "google_application_credentials",
        ),
    )
    storage_url_style: Literal["download_token", "signed"] = Field(
        default="download_token",
        validation_alias=AliasChoices("STORAGE_URL_STYLE", "storage_url_style"),
    )
    signed_url_ttl_days: int = Field(
        default=7,
        ge=1,
        le=7,
        validation_alias=AliasChoices("SIGNED_URL_TTL_DAYS", "signed_url_ttl_days"),
    )

    firebase_project_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("FIREBASE_PROJECT_ID", "firebase_project_id"),
    )

    # Image download (history re-embedding of generated images)
    image_download_allowed_hosts: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices(
            "IMAGE_DOWNLOAD_ALLOWED_HOSTS",
            "image_download_allowed_hosts",
        ),
        description=("List of hostnames allowed for server-side image downloads."),
    )
    image_download_timeout_seconds: int = Field(
        default=15,
        ge=1,
        validation_alias=AliasChoices(
            "IMAGE_DOWNLOAD_TIMEOUT_SECONDS",
            "image_download_timeout_seconds",
        ),
    )
    image_download_max_bytes: int = Field(
        default=10 * 1024 * 1024,
        ge=1,
        validation_alias=AliasChoices(
            "IMAGE_DOWNLOAD_MAX_BYTES",
            "image_download_max_bytes",
        ),
    )

    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        validation_alias=AliasChoices("CORS_ALLOW_ORIGINS", "cors_allow_origins"),
    )

    @property
    def signed_url_ttl(self) -> timedelta:
        return timedelta(days=self.signed_url_ttl_days)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()  # type: ignore[call-arg]


__all__ = ["Settings", "get_settings"]
