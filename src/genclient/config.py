"""Configuration management for genclient."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from genclient.logging_utils import configure_logging

MIB = 1024 * 1024


class Settings(BaseSettings):
    """Client settings."""

    model_config = SettingsConfigDict(
        env_prefix="GENCLIENT_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Backend
    api_base_url: str = Field(default="http://localhost:3000/api", description="Backend base URL")
    token: str | None = Field(default=None, description="Static bearer token used when no identity provider is wired")

    # Request policy
    json_timeout_seconds: float = Field(default=120.0, gt=0, description="Timeout for JSON calls")
    upload_timeout_seconds: float = Field(default=180.0, gt=0, description="Timeout for multipart upload calls")
    resume_timeout_seconds: float = Field(default=120.0, gt=0, description="Timeout for resume analysis uploads")

    # Session
    token_refresh_seconds: float = Field(default=50.0, gt=0, description="Interval between token refreshes")

    # Pipeline
    history_page_size: int = Field(default=50, ge=1, le=500, description="Items requested per history page")
    decode_min_length: int = Field(default=64, ge=1, description="Minimum length for heuristic payload fields")
    max_image_upload_bytes: int = Field(default=10 * MIB, gt=0, description="Largest accepted image upload")
    max_resume_upload_bytes: int = Field(default=5 * MIB, gt=0, description="Largest accepted resume upload")
    resource_dir: Path | None = Field(default=None, description="Directory for decoded binary artifacts")

    # Logging
    log_level: str = Field(default="INFO", description="Log level")

    @field_validator("api_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("token")
    @classmethod
    def _blank_token_is_none(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()


def get_settings(**overrides: object) -> Settings:
    """Get application settings.

    Args:
        overrides: Field values that take precedence over the environment

    Returns:
        Settings instance
    """
    settings = Settings(**overrides)  # type: ignore[arg-type]
    configure_logging(level=settings.log_level)
    return settings
