"""
Fax carrier selection.

The active carrier is a ``CarrierKind`` resolved when configuration loads;
construction dispatches on it with an exhaustive match.
"""

from typing import Any, assert_never

import httpx

from faxrelay.carriers.config import CarrierConfig, CarrierKind
from faxrelay.carriers.interface import FaxCarrier
from faxrelay.carriers.notifyre import NotifyreAdapter
from faxrelay.carriers.telnyx import TelnyxAdapter
from faxrelay.errors import ConfigurationError
from faxrelay.shared.logging import get_logger, mask_secret
from faxrelay.storage.config import ObjectStoreConfig
from faxrelay.storage.signed_url import SignedUrlIssuer

logger = get_logger(__name__)


def _require(value: str, name: str, kind: CarrierKind) -> None:
    if not value:
        raise ConfigurationError(
            f"{name} is required for the {kind.value} carrier",
            error_code="MISSING_CONFIGURATION",
        )


def build_carrier(
    config: CarrierConfig,
    object_store: ObjectStoreConfig,
    http_client: httpx.Client | None = None,
    s3_client: Any | None = None,
) -> FaxCarrier:
    """Build the adapter for the configured carrier.

    Args:
        config: Carrier configuration; ``config.provider`` picks the adapter.
        object_store: Object store settings, used by URL-based carriers.
        http_client: Optional shared httpx client.
        s3_client: Optional pre-built boto3 S3 client.

    Raises:
        ConfigurationError: If credentials the carrier needs are missing.
    """
    kind = config.provider
    match kind:
        case CarrierKind.NOTIFYRE:
            _require(config.notifyre_api_key, "FAX_NOTIFYRE_API_KEY", kind)
            carrier: FaxCarrier = NotifyreAdapter(config, http_client=http_client)
            credential = config.notifyre_api_key
        case CarrierKind.TELNYX:
            _require(config.telnyx_api_key, "FAX_TELNYX_API_KEY", kind)
            _require(config.telnyx_connection_id, "FAX_TELNYX_CONNECTION_ID", kind)
            _require(object_store.bucket, "OBJECT_STORE_BUCKET", kind)
            issuer = SignedUrlIssuer(object_store, s3_client=s3_client)
            carrier = TelnyxAdapter(config, issuer=issuer, http_client=http_client)
            credential = config.telnyx_api_key
        case _:
            assert_never(kind)

    logger.info(
        "Fax carrier created",
        extra={"carrier": kind.value, "api_key": mask_secret(credential)},
    )
    return carrier
