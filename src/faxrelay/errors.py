"""
Error taxonomy shared by carriers, the signed-URL issuer and the engine.

Every error carries a stable ``kind`` so callers can surface a clear
rejection without inspecting exception classes.
"""

from typing import Any, ClassVar


class FaxEngineError(Exception):
    """Base exception for fax engine errors."""

    kind: ClassVar[str] = "internal"
    retryable: ClassVar[bool] = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        provider_response: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.provider_response = provider_response or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "error_code": self.error_code,
        }


class ValidationError(FaxEngineError):
    """Malformed request; the caller's fault and never retried."""

    kind = "validation"


class WebhookParseError(ValidationError):
    """Inbound carrier callback could not be parsed."""

    kind = "webhook_parse"


class ConfigurationError(FaxEngineError):
    """Missing or inconsistent configuration for the selected carrier."""

    kind = "configuration"


class TransportError(FaxEngineError):
    """Network failure, timeout or transient carrier outage."""

    kind = "transport"
    retryable = True


class CarrierRejected(FaxEngineError):
    """Carrier explicitly refused the request or returned an unusable response."""

    kind = "carrier_rejected"


class SigningError(FaxEngineError):
    """Signed URL could not be produced or failed verification."""

    kind = "signing"
    retryable = True


class PersistenceConflict(FaxEngineError):
    """Lost the compare-and-set race; the signal is discarded."""

    kind = "persistence_conflict"


__all__ = [
    "CarrierRejected",
    "ConfigurationError",
    "FaxEngineError",
    "PersistenceConflict",
    "SigningError",
    "TransportError",
    "ValidationError",
    "WebhookParseError",
]
