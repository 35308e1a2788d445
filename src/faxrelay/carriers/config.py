"""
Fax carrier configuration.

The active carrier is resolved to a closed ``CarrierKind`` when settings load,
so an unknown name fails at startup rather than on the first send.
"""

from enum import Enum

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MAX_DOCUMENT_BYTES = 100 * 1024 * 1024


class CarrierKind(str, Enum):
    """Supported fax carriers."""

    NOTIFYRE = "notifyre"
    TELNYX = "telnyx"


# Historic deployments were configured with this spelling
_CARRIER_ALIASES: dict[str, CarrierKind] = {
    "telynx": CarrierKind.TELNYX,
}


def resolve_carrier_kind(value: str | CarrierKind) -> CarrierKind:
    """Resolve a configured carrier name to a ``CarrierKind``."""
    if isinstance(value, CarrierKind):
        return value
    name = (value or "").strip().lower()
    if name in _CARRIER_ALIASES:
        return _CARRIER_ALIASES[name]
    try:
        return CarrierKind(name)
    except ValueError:
        supported = ", ".join(kind.value for kind in CarrierKind)
        raise ValueError(f"Unsupported fax carrier '{value}'. Supported: {supported}") from None


class CarrierConfig(BaseSettings):
    """Fax carrier configuration from environment."""

    model_config = SettingsConfigDict(
        env_prefix="FAX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Carrier selection
    provider: CarrierKind = Field(default=CarrierKind.NOTIFYRE)

    # Notifyre
    notifyre_api_key: str = Field(default="")
    notifyre_base_url: str = Field(default="https://api.notifyre.com")
    notifyre_webhook_secret: str = Field(default="")
    notifyre_cover_page_template: str = Field(
        default="",
        description="Cover page template applied when a request names none",
    )

    # Telnyx
    telnyx_api_key: str = Field(default="")
    telnyx_base_url: str = Field(default="https://api.telnyx.com")
    telnyx_connection_id: str = Field(default="")
    telnyx_sender_id: str = Field(default="")

    # Shared
    default_client_reference: str = Field(default="faxrelay")
    request_timeout_seconds: float = Field(default=30.0, gt=0, le=300)
    max_document_bytes: int = Field(default=MAX_DOCUMENT_BYTES, ge=1)

    @field_validator("provider", mode="before")
    @classmethod
    def normalize_provider(cls, value: object) -> CarrierKind:
        if isinstance(value, (str, CarrierKind)):
            return resolve_carrier_kind(value)
        raise ValueError(f"Unsupported fax carrier value: {value!r}")

    @field_validator("notifyre_base_url", "telnyx_base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")
