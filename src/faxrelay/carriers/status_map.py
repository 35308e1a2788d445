"""
Carrier status vocabularies mapped to canonical fax statuses.

Lookups are case-insensitive. Raw values that no vocabulary knows resolve to
``FaxStatus.FAILED`` so an unexpected terminal-looking signal never leaves a
record stuck; each occurrence is logged for vocabulary extension.
"""

from collections.abc import Mapping

from faxrelay.carriers.interface import FaxStatus
from faxrelay.shared.logging import get_logger

logger = get_logger(__name__)

UNKNOWN_STATUS_FALLBACK = FaxStatus.FAILED

NOTIFYRE_STATUS_MAP: dict[str, FaxStatus] = {
    "preparing": FaxStatus.QUEUED,
    "queued": FaxStatus.QUEUED,
    "submitted": FaxStatus.QUEUED,
    "in progress": FaxStatus.PROCESSING,
    "processing": FaxStatus.PROCESSING,
    "receiving": FaxStatus.PROCESSING,
    "sending": FaxStatus.SENDING,
    "successful": FaxStatus.DELIVERED,
    "delivered": FaxStatus.DELIVERED,
    "sent": FaxStatus.DELIVERED,
    "received": FaxStatus.DELIVERED,
    "completed": FaxStatus.DELIVERED,
    "failed": FaxStatus.FAILED,
    "error": FaxStatus.FAILED,
    "timeout": FaxStatus.FAILED,
    "rejected": FaxStatus.FAILED,
    "failed - check number and try again": FaxStatus.FAILED,
    "failed - connection not a fax machine": FaxStatus.FAILED,
    "failed - busy": FaxStatus.BUSY,
    "failed - no answer": FaxStatus.NO_ANSWER,
    "cancelled": FaxStatus.CANCELLED,
    "canceled": FaxStatus.CANCELLED,
    "aborted": FaxStatus.CANCELLED,
}

TELNYX_STATUS_MAP: dict[str, FaxStatus] = {
    "queued": FaxStatus.QUEUED,
    "initiated": FaxStatus.QUEUED,
    "media.processed": FaxStatus.PROCESSING,
    "media.processing": FaxStatus.PROCESSING,
    "originated": FaxStatus.PROCESSING,
    "receiving": FaxStatus.PROCESSING,
    "processing": FaxStatus.PROCESSING,
    "sending": FaxStatus.SENDING,
    "delivered": FaxStatus.DELIVERED,
    "received": FaxStatus.DELIVERED,
    "failed": FaxStatus.FAILED,
    "canceled": FaxStatus.CANCELLED,
    "cancelled": FaxStatus.CANCELLED,
}

# Telnyx reports busy and unanswered lines as failures with a reason
TELNYX_FAILURE_REASON_MAP: dict[str, FaxStatus] = {
    "user_busy": FaxStatus.BUSY,
    "busy": FaxStatus.BUSY,
    "no_answer": FaxStatus.NO_ANSWER,
    "no_answer_timeout": FaxStatus.NO_ANSWER,
}


def map_carrier_status(
    raw_status: str | None,
    vocabulary: Mapping[str, FaxStatus],
    carrier: str = "unknown",
) -> FaxStatus:
    """Map a raw carrier status string to a canonical status.

    Args:
        raw_status: Status string exactly as the carrier sent it.
        vocabulary: Lower-cased raw value to canonical status table.
        carrier: Carrier name, for the warning on unknown values.

    Returns:
        The canonical status; ``FaxStatus.FAILED`` when the value is unknown.
    """
    key = (raw_status or "").strip().lower()
    status = vocabulary.get(key)
    if status is None:
        logger.warning(
            "Unknown carrier status mapped to failed",
            extra={"carrier": carrier, "raw_status": raw_status},
        )
        return UNKNOWN_STATUS_FALLBACK
    return status


def map_notifyre_status(raw_status: str | None) -> FaxStatus:
    return map_carrier_status(raw_status, NOTIFYRE_STATUS_MAP, carrier="notifyre")


def map_telnyx_status(raw_status: str | None, failure_reason: str | None = None) -> FaxStatus:
    status = map_carrier_status(raw_status, TELNYX_STATUS_MAP, carrier="telnyx")
    if status is FaxStatus.FAILED and failure_reason:
        return TELNYX_FAILURE_REASON_MAP.get(failure_reason.strip().lower(), status)
    return status
