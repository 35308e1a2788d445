"""
Telnyx fax carrier adapter.

Telnyx fetches the document itself, so inline bytes are first uploaded to
object storage and referenced through a signed URL.
"""

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import httpx

from faxrelay.carriers.config import CarrierConfig, CarrierKind
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
from faxrelay.carriers.status_map import map_telnyx_status
from faxrelay.errors import CarrierRejected, ValidationError, WebhookParseError
from faxrelay.shared.logging import get_logger, mask_number
from faxrelay.storage.signed_url import SignedUrlIssuer

logger = get_logger(__name__)

RECENT_PAGE_SIZE = 250
MAX_RECENT_PAGES = 20


class TelnyxAdapter(FaxCarrier):
    """Telnyx carrier adapter (URL-fetched documents)."""

    kind = CarrierKind.TELNYX

    def __init__(
        self,
        config: CarrierConfig,
        issuer: SignedUrlIssuer,
        http_client: httpx.Client | None = None,
    ) -> None:
        super().__init__(config, http_client=http_client)
        self._issuer = issuer

    @property
    def base_url(self) -> str:
        return self._config.telnyx_base_url

    def _auth_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._config.telnyx_api_key}",
            "Content-Type": "application/json",
        }

    def map_status(self, raw_status: str | None) -> FaxStatus:
        return map_telnyx_status(raw_status)

    def validate_request(self, request: FaxSendRequest) -> None:
        super().validate_request(request)
        if len(request.recipients) != 1:
            raise ValidationError(
                "Telnyx sends to exactly one recipient per fax",
                error_code="TOO_MANY_RECIPIENTS",
            )
        if len(request.documents) != 1:
            raise ValidationError(
                "Telnyx sends exactly one document per fax",
                error_code="TOO_MANY_DOCUMENTS",
            )

    def build_payload(self, request: FaxSendRequest) -> dict[str, Any]:
        """Resolve the document to a fetchable URL and build the request body.

        Inline bytes are uploaded and granted before the payload exists, so
        the payload only ever references a URL.
        """
        document = request.documents[0]
        match document:
            case InlineDocument(content=content, content_type=content_type):
                key = self._issuer.build_object_key(uuid4().hex, 1)
                self._issuer.upload(content, key, content_type=content_type)
                media_url = self._issuer.grant(key).url
            case ExternalDocument(url=url):
                media_url = url

        payload = {
            "connection_id": self._config.telnyx_connection_id,
            "to": request.recipients[0],
            "from": request.sender_id or self._config.telnyx_sender_id,
            "media_url": media_url,
        }
        logger.info(
            "Built Telnyx fax payload",
            extra={"to": mask_number(request.recipients[0]), "inline": isinstance(document, InlineDocument)},
        )
        return payload

    def submit(self, payload: dict[str, Any]) -> SubmissionResult:
        body = self._request("POST", "/v2/faxes", json_body=payload, operation="submit")
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict) or not data.get("id"):
            logger.error("Telnyx response missing fax ID", extra={"response": body})
            raise CarrierRejected(
                message="Telnyx response did not include a fax ID",
                error_code="MISSING_EXTERNAL_ID",
                provider_response=body if isinstance(body, dict) else {"body": body},
            )

        raw_status = str(data.get("status") or "queued")
        logger.info("Telnyx fax submitted", extra={"external_id": data["id"], "status": raw_status})
        return SubmissionResult(
            external_id=str(data["id"]),
            status=self.map_status(raw_status),
            original_status=raw_status,
            submitted_at=parse_carrier_timestamp(data.get("created_at")) or datetime.now(timezone.utc),
            document_urls=(payload["media_url"],) if payload.get("media_url") else (),
            raw=body,
        )

    def get_fax_status(self, external_id: str) -> StatusSnapshot:
        body = self._request("GET", f"/v2/faxes/{external_id}", operation="get_status")
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise CarrierRejected(
                message="Telnyx status response missing data",
                error_code="INVALID_RESPONSE",
                provider_response=body if isinstance(body, dict) else {"body": body},
            )
        return self._snapshot_from_record(data, fallback_id=external_id)

    def list_recent_faxes(self, since: datetime, until: datetime) -> list[StatusSnapshot]:
        window = {
            "filter[created_at][gte]": since.astimezone(timezone.utc).isoformat(),
            "filter[created_at][lte]": until.astimezone(timezone.utc).isoformat(),
            "page[size]": RECENT_PAGE_SIZE,
        }

        records: list[Any] = []
        page_number = 1
        while True:
            params = {**window, "page[number]": page_number}
            body = self._request("GET", "/v2/faxes", params=params, operation="list_recent")
            if not isinstance(body, dict):
                break
            records.extend(body.get("data") or [])

            meta = body.get("meta")
            total_pages = meta.get("total_pages") if isinstance(meta, dict) else None
            if not isinstance(total_pages, int) or page_number >= total_pages:
                break
            if page_number >= MAX_RECENT_PAGES:
                logger.warning(
                    "Telnyx recent list truncated",
                    extra={"pages_read": page_number, "total_pages": total_pages},
                )
                break
            page_number += 1

        snapshots: list[StatusSnapshot] = []
        for record in records:
            if not isinstance(record, dict) or not record.get("id"):
                logger.warning("Skipping Telnyx record without ID", extra={"record": record})
                continue
            snapshots.append(self._snapshot_from_record(record))
        return snapshots

    def _snapshot_from_record(
        self,
        record: Mapping[str, Any],
        fallback_id: str | None = None,
    ) -> StatusSnapshot:
        external_id = record.get("fax_id") or record.get("id") or fallback_id
        if not external_id:
            raise CarrierRejected(
                message="Telnyx record did not include a fax ID",
                error_code="MISSING_EXTERNAL_ID",
                provider_response=dict(record),
            )
        raw_status = str(record.get("status") or "")
        failure_reason = record.get("failure_reason")
        status = map_telnyx_status(raw_status, failure_reason)
        updated_at = parse_carrier_timestamp(record.get("updated_at"))
        return StatusSnapshot(
            external_id=str(external_id),
            raw_status=raw_status,
            status=status,
            pages=parse_pages(record.get("page_count")),
            cost=parse_cost(record.get("cost")),
            sent_at=updated_at if status in (FaxStatus.SENDING, FaxStatus.DELIVERED) else None,
            completed_at=updated_at if status.is_terminal else None,
            error_message=str(failure_reason) if failure_reason else None,
            raw=dict(record),
        )

    def parse_webhook_event(self, payload: dict[str, Any]) -> CarrierWebhookEvent:
        data = payload.get("data")
        if not isinstance(data, dict):
            raise WebhookParseError(
                message="Missing data in Telnyx webhook",
                error_code="MISSING_DATA",
                provider_response=payload,
            )
        event_id = data.get("id")
        if not event_id:
            raise WebhookParseError(
                message="Missing event id in Telnyx webhook",
                error_code="MISSING_EVENT_ID",
                provider_response=payload,
            )
        fax = data.get("payload")
        if not isinstance(fax, dict) or not fax.get("fax_id"):
            raise WebhookParseError(
                message="Missing fax_id in Telnyx webhook",
                error_code="MISSING_FAX_ID",
                provider_response=payload,
            )
        if not fax.get("status"):
            raise WebhookParseError(
                message="Missing status in Telnyx webhook",
                error_code="MISSING_STATUS",
                provider_response=payload,
            )

        record = dict(fax)
        if "updated_at" not in record and data.get("occurred_at"):
            record["updated_at"] = data["occurred_at"]

        return CarrierWebhookEvent(
            event_id=str(event_id),
            event_type=str(data.get("event_type") or "fax.status"),
            carrier=self.kind,
            snapshot=self._snapshot_from_record(record),
            received_at=datetime.now(timezone.utc),
            raw_payload=payload,
        )
