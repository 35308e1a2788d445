"""
Explicit runtime context handed to component constructors.
"""

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field

from faxrelay.carriers.config import CarrierConfig
from faxrelay.config import Settings
from faxrelay.storage.config import ObjectStoreConfig


@dataclass(frozen=True)
class EngineContext:
    """Configuration bundle built once at process start."""

    settings: Settings
    carrier: CarrierConfig
    object_store: ObjectStoreConfig

    @classmethod
    def from_env(cls) -> "EngineContext":
        return cls(
            settings=Settings(),
            carrier=CarrierConfig(),
            object_store=ObjectStoreConfig(),
        )


class CallerContext(BaseModel):
    """Who asked for a fax; parsed once where the request enters the process."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    user_id: str | None = None
    client_reference: str | None = Field(default=None, max_length=255)
    source_app: str | None = None
