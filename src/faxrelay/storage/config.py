"""
Object storage configuration for carrier-fetchable fax documents.
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# SigV4 query signing rejects expiries longer than seven days
MAX_SIGNED_URL_TTL_SECONDS = 7 * 24 * 60 * 60
DEFAULT_SIGNED_URL_TTL_SECONDS = 12 * 60 * 60


class ObjectStoreConfig(BaseSettings):
    """S3-compatible object store settings from environment."""

    model_config = SettingsConfigDict(
        env_prefix="OBJECT_STORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    bucket: str = Field(default="")
    endpoint_url: str = Field(
        default="",
        description="S3-compatible endpoint, e.g. https://<account>.r2.cloudflarestorage.com",
    )
    region: str = Field(default="auto")
    access_key_id: str = Field(default="")
    secret_access_key: str = Field(default="")
    addressing_style: Literal["path", "virtual"] = "path"
    key_prefix: str = Field(default="fax")

    signed_url_ttl_seconds: int = Field(
        default=DEFAULT_SIGNED_URL_TTL_SECONDS,
        ge=1,
        le=MAX_SIGNED_URL_TTL_SECONDS,
    )
    connect_timeout_seconds: float = Field(default=10.0, gt=0)
    read_timeout_seconds: float = Field(default=60.0, gt=0)

    @field_validator("endpoint_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("key_prefix")
    @classmethod
    def strip_slashes(cls, value: str) -> str:
        return value.strip("/")

    @property
    def is_configured(self) -> bool:
        return bool(self.bucket and self.endpoint_url and self.access_key_id and self.secret_access_key)
