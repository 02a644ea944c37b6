"""
Configuration and settings for the nudgebox service.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Environment-backed settings for the FastAPI service.

    Each field reads the upper-cased env var of the same name, e.g.
    ``DATABASE_URL``. The in-memory toggle also answers to
    ``NUDGEBOX_USE_IN_MEMORY_BACKENDS``.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="")
    log_level: str = Field(default="INFO")

    # Database (Postgres expected, any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None)

    # Mailbox store (Redis). Takes precedence over the database for mailboxes.
    redis_url: Optional[str] = Field(default=None)
    redis_key_prefix: str = Field(default="nudgebox")

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "NUDGEBOX_USE_IN_MEMORY_BACKENDS", "use_in_memory_backends"
        ),
    )

    # Seconds a mailbox operation may wait for its key before giving up.
    store_timeout_seconds: float = Field(default=5.0)

    # Credentials
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # Audio blobs. The key is used as raw bytes, 32 characters selects AES-256.
    audio_password: Optional[str] = Field(default=None)
    audio_dir: str = Field(default="Audio")
    export_skip_names: list[str] = Field(default_factory=lambda: [".DS_Store"])
    export_best_effort: bool = Field(default=False)

    # S3-compatible blob storage (Tencent COS). Local directory when unset.
    cos_endpoint: Optional[str] = Field(default=None)
    cos_region: Optional[str] = Field(default=None)
    cos_bucket: Optional[str] = Field(default=None)
    cos_prefix: str = Field(default="Audio/")
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)

    # Wellbeing map summary
    map_refresh_seconds: float = Field(default=120.0)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
