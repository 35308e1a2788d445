"""
Notifyre fax carrier adapter.

Documents travel inline as base64 inside the JSON body, so this adapter never
touches object storage.
"""

import base64
import hashlib
import hmac
import json
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from faxrelay.carriers.config import CarrierKind
from faxrelay.carriers.interface import (
    CarrierWebhookEvent,
    ExternalDocument,
    FaxCarrier,
    FaxSendRequest,
    FaxStatus,
    InlineDocument,
    StatusSnapshot,
    SubmissionResult,
    parse_carrier_timestamp,
    parse_cost,
    parse_pages,
)
from faxrelay.carriers.status_map import map_notifyre_status
from faxrelay.errors import CarrierRejected, ValidationError, WebhookParseError
from faxrelay.shared.logging import get_logger, mask_number

logger = get_logger(__name__)

SIGNATURE_HEADER = "x-notifyre-signature"
SUBMITTED_STATUS = "Submitted"
RECENT_PAGE_LIMIT = 1000


def _first(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


class NotifyreAdapter(FaxCarrier):
    """Notifyre carrier adapter (inline documents)."""

    kind = CarrierKind.NOTIFYRE

    @property
    def base_url(self) -> str:
        return self._config.notifyre_base_url

    def _auth_headers(self) -> dict[str, str]:
        return {
            "x-api-token": self._config.notifyre_api_key,
            "Content-Type": "application/json",
        }

    def map_status(self, raw_status: str | None) -> FaxStatus:
        return map_notifyre_status(raw_status)

    def build_payload(self, request: FaxSendRequest) -> dict[str, Any]:
        documents: list[dict[str, str]] = []
        for document in request.documents:
            match document:
                case InlineDocument(filename=filename, content=content):
                    documents.append(
                        {
                            "Filename": filename,
                            "Data": base64.b64encode(content).decode("ascii"),
                        }
                    )
                case ExternalDocument(url=url):
                    raise ValidationError(
                        f"Notifyre requires inline document bytes, got URL {url}",
                        error_code="UNSUPPORTED_DOCUMENT",
                    )

        faxes: dict[str, Any] = {
            "Recipients": [{"Type": "fax_number", "Value": r} for r in request.recipients],
            "SendFrom": request.sender_id,
            "ClientReference": request.client_reference or self._config.default_client_reference,
            "Subject": request.subject or request.message or "Fax Document",
            "IsHighQuality": request.is_high_quality,
            "CoverPage": False,
            "Documents": documents,
        }
        payload: dict[str, Any] = {"Faxes": faxes}

        template = request.cover_page or self._config.notifyre_cover_page_template
        if template:
            payload["TemplateName"] = template

        logger.info(
            "Built Notifyre fax payload",
            extra={
                "recipients": [mask_number(r) for r in request.recipients],
                "documents": len(documents),
            },
        )
        return payload

    def submit(self, payload: dict[str, Any]) -> SubmissionResult:
        body = self._request("POST", "/fax/send", json_body=payload, operation="submit")
        if not isinstance(body, dict):
            raise CarrierRejected(
                message="Notifyre returned a non-object response",
                error_code="INVALID_RESPONSE",
                provider_response={"body": body},
            )

        if body.get("success") is False:
            raise CarrierRejected(
                message=self._error_message(body) or "Notifyre rejected the fax",
                error_code=str(body.get("statusCode") or "REJECTED"),
                provider_response=body,
            )

        data = body.get("payload") if isinstance(body.get("payload"), dict) else {}
        external_id = _first(data, "faxID", "faxId", "id") or body.get("id")
        if not external_id:
            logger.error("Notifyre response missing fax ID", extra={"response": body})
            raise CarrierRejected(
                message="Notifyre response did not include a fax ID",
                error_code="MISSING_EXTERNAL_ID",
                provider_response=body,
            )

        logger.info("Notifyre fax submitted", extra={"external_id": str(external_id)})
        friendly_id = _first(data, "friendlyID", "friendlyId")
        return SubmissionResult(
            external_id=str(external_id),
            status=FaxStatus.QUEUED,
            original_status=SUBMITTED_STATUS,
            submitted_at=datetime.now(timezone.utc),
            friendly_id=str(friendly_id) if friendly_id else None,
            raw=body,
        )

    def get_fax_status(self, external_id: str) -> StatusSnapshot:
        body = self._request("GET", f"/fax/sent/{external_id}", operation="get_status")
        data = body.get("payload") if isinstance(body, dict) else None
        record = data if isinstance(data, dict) else body
        if not isinstance(record, dict):
            raise CarrierRejected(
                message="Notifyre status response was not an object",
                error_code="INVALID_RESPONSE",
                provider_response={"body": body},
            )
        return self._snapshot_from_record(record, fallback_id=external_id)

    def list_recent_faxes(self, since: datetime, until: datetime) -> list[StatusSnapshot]:
        params = {
            "sort": "desc",
            "fromDate": int(since.timestamp()),
            "toDate": int(until.timestamp()),
            "skip": 0,
            "limit": RECENT_PAGE_LIMIT,
        }
        body = self._request("GET", "/fax/send", params=params, operation="list_recent")

        snapshots: list[StatusSnapshot] = []
        for record in self._extract_records(body):
            external_id = _first(record, "id", "faxID", "ID")
            if not external_id:
                logger.warning("Skipping Notifyre record without ID", extra={"record": record})
                continue
            snapshots.append(self._snapshot_from_record(record))
        return snapshots

    @staticmethod
    def _extract_records(body: Any) -> list[dict[str, Any]]:
        if isinstance(body, list):
            records: Any = body
        elif isinstance(body, dict):
            data = body.get("payload")
            if isinstance(data, dict) and data.get("faxes") is not None:
                records = data["faxes"]
            elif body.get("data") is not None:
                records = body["data"]
            else:
                records = data if isinstance(data, list) else []
        else:
            records = []

        if isinstance(records, dict):
            records = list(records.values())
        return [r for r in records if isinstance(r, dict)]

    def _snapshot_from_record(
        self,
        record: Mapping[str, Any],
        fallback_id: str | None = None,
    ) -> StatusSnapshot:
        external_id = _first(record, "id", "faxID", "ID", "FaxID") or fallback_id
        if not external_id:
            raise CarrierRejected(
                message="Notifyre record did not include a fax ID",
                error_code="MISSING_EXTERNAL_ID",
                provider_response=dict(record),
            )
        raw_status = str(_first(record, "status", "Status") or "")
        return StatusSnapshot(
            external_id=str(external_id),
            raw_status=raw_status,
            status=self.map_status(raw_status),
            pages=parse_pages(_first(record, "pages", "Pages")),
            cost=parse_cost(_first(record, "cost", "Cost")),
            sent_at=parse_carrier_timestamp(_first(record, "sentAt", "SentAt", "createdDateUtc")),
            completed_at=parse_carrier_timestamp(
                _first(record, "completedAt", "CompletedAt", "lastUpdatedDateUtc")
            ),
            error_message=_first(record, "errorMessage", "ErrorMessage", "failedMessage"),
            raw=dict(record),
        )

    def parse_webhook_event(self, payload: dict[str, Any]) -> CarrierWebhookEvent:
        data = payload.get("Payload") or payload.get("payload")
        if not isinstance(data, dict):
            raise WebhookParseError(
                message="Missing Payload in Notifyre webhook",
                error_code="MISSING_PAYLOAD",
                provider_response=payload,
            )
        if not _first(data, "ID", "Id", "id", "FaxID", "faxID"):
            raise WebhookParseError(
                message="Missing fax ID in Notifyre webhook",
                error_code="MISSING_FAX_ID",
                provider_response=payload,
            )
        if not _first(data, "Status", "status"):
            raise WebhookParseError(
                message="Missing status in Notifyre webhook",
                error_code="MISSING_STATUS",
                provider_response=payload,
            )

        event_id = _first(payload, "EventID", "EventId", "Id", "id")
        if not event_id:
            # Redeliveries repeat the body byte-for-byte, so its digest is stable
            canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
            event_id = "notifyre-" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()

        snapshot = self._snapshot_from_record(
            {
                "id": _first(data, "ID", "Id", "id", "FaxID", "faxID"),
                "status": _first(data, "Status", "status"),
                "pages": _first(data, "Pages", "pages"),
                "cost": _first(data, "Cost", "cost"),
                "sentAt": _first(data, "SentAt", "sentAt", "SentDateUtc"),
                "completedAt": _first(data, "CompletedAt", "completedAt", "LastUpdatedDateUtc"),
                "errorMessage": _first(data, "ErrorMessage", "errorMessage", "FailedMessage"),
            }
        )
        return CarrierWebhookEvent(
            event_id=str(event_id),
            event_type=str(_first(payload, "Event", "event") or "fax.status"),
            carrier=self.kind,
            snapshot=snapshot,
            received_at=datetime.now(timezone.utc),
            raw_payload=payload,
        )

    def validate_webhook_signature(self, body: bytes, headers: Mapping[str, str]) -> bool:
        secret = self._config.notifyre_webhook_secret
        if not secret:
            logger.warning("Notifyre webhook secret not configured; skipping verification")
            return True

        lowered = {k.lower(): v for k, v in headers.items()}
        signature = lowered.get(SIGNATURE_HEADER)
        if not signature:
            return False

        digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
        expected = base64.b64encode(digest).decode("ascii")
        return hmac.compare_digest(expected, signature)
