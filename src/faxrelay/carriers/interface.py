"""
Fax carrier adapter interface definition.

Adapters translate a standardized ``FaxSendRequest`` into one carrier call and
normalize what comes back. The sync methods are the source of truth; async
wrappers run them in a worker thread.
"""

import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, ClassVar
from urllib.parse import urlsplit

import anyio
import httpx

from faxrelay.carriers.config import CarrierConfig, CarrierKind
from faxrelay.errors import CarrierRejected, TransportError, ValidationError
from faxrelay.shared.logging import get_logger

logger = get_logger(__name__)


class FaxStatus(str, Enum):
    """Canonical fax transmission status."""

    QUEUED = "queued"
    PROCESSING = "processing"
    SENDING = "sending"
    DELIVERED = "delivered"
    FAILED = "failed"
    BUSY = "busy"
    NO_ANSWER = "no-answer"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def rank(self) -> int:
        """Position in the progress order; all terminal states share the top rank."""
        return _PROGRESS_RANK.get(self, TERMINAL_RANK)


TERMINAL_STATUSES: frozenset[FaxStatus] = frozenset(
    {
        FaxStatus.DELIVERED,
        FaxStatus.FAILED,
        FaxStatus.BUSY,
        FaxStatus.NO_ANSWER,
        FaxStatus.CANCELLED,
    }
)

_PROGRESS_RANK: dict[FaxStatus, int] = {
    FaxStatus.QUEUED: 0,
    FaxStatus.PROCESSING: 1,
    FaxStatus.SENDING: 2,
}
TERMINAL_RANK = 3


def allowed_predecessors(target: FaxStatus) -> frozenset[FaxStatus]:
    """Non-terminal statuses from which ``target`` may be entered."""
    return frozenset(status for status, rank in _PROGRESS_RANK.items() if rank <= target.rank)


@dataclass(frozen=True)
class InlineDocument:
    """Document bytes carried inside the request."""

    filename: str
    content: bytes
    content_type: str = "application/pdf"

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class ExternalDocument:
    """Document already reachable at a URL the carrier can fetch."""

    url: str
    filename: str = "document.pdf"
    content_type: str = "application/pdf"


Document = InlineDocument | ExternalDocument


@dataclass(frozen=True)
class FaxSendRequest:
    """Standardized request to transmit one fax."""

    recipients: tuple[str, ...]
    documents: tuple[Document, ...]
    sender_id: str = ""
    subject: str | None = None
    message: str | None = None
    cover_page: str | None = None
    client_reference: str | None = None
    is_high_quality: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SubmissionResult:
    """Carrier acknowledgement of a submitted fax."""

    external_id: str
    status: FaxStatus
    original_status: str
    submitted_at: datetime
    friendly_id: str | None = None
    document_urls: tuple[str, ...] = ()
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StatusSnapshot:
    """One carrier-reported state for a fax, from a webhook or a poll."""

    external_id: str
    raw_status: str
    status: FaxStatus
    pages: int | None = None
    cost: Decimal | None = None
    sent_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CarrierWebhookEvent:
    """Parsed carrier callback."""

    event_id: str
    event_type: str
    carrier: CarrierKind
    snapshot: StatusSnapshot
    received_at: datetime
    raw_payload: dict[str, Any] = field(default_factory=dict)


def parse_carrier_timestamp(value: Any) -> datetime | None:
    """Parse ISO-8601 strings or unix seconds into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return datetime.fromtimestamp(int(text), tz=timezone.utc)
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Unparseable carrier timestamp", extra={"value": text})
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def parse_pages(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        pages = int(value)
    except (TypeError, ValueError):
        return None
    return pages if pages >= 0 else None


def parse_cost(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        cost = Decimal(str(value))
    except InvalidOperation:
        return None
    return cost if cost >= 0 else None


class FaxCarrier(ABC):
    """Abstract interface for fax carriers.

    Each ``submit`` performs exactly one carrier API call and never retries;
    retry policy belongs to the caller.
    """

    kind: ClassVar[CarrierKind]

    def __init__(
        self,
        config: CarrierConfig,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._config = config
        self._http_client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.Client:
        if self._http_client is None:
            self._http_client = httpx.Client(
                timeout=httpx.Timeout(self._config.request_timeout_seconds)
            )
        return self._http_client

    def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            self._http_client.close()
            self._http_client = None

    @property
    @abstractmethod
    def base_url(self) -> str:
        ...

    @abstractmethod
    def _auth_headers(self) -> dict[str, str]:
        ...

    @abstractmethod
    def build_payload(self, request: FaxSendRequest) -> dict[str, Any]:
        """Translate a validated request into the carrier request body."""
        ...

    @abstractmethod
    def submit(self, payload: dict[str, Any]) -> SubmissionResult:
        """Submit a built payload with exactly one carrier call."""
        ...

    @abstractmethod
    def get_fax_status(self, external_id: str) -> StatusSnapshot:
        """Fetch the current carrier state of one fax."""
        ...

    @abstractmethod
    def list_recent_faxes(self, since: datetime, until: datetime) -> list[StatusSnapshot]:
        """Fetch carrier records created within ``[since, until]``."""
        ...

    @abstractmethod
    def parse_webhook_event(self, payload: dict[str, Any]) -> CarrierWebhookEvent:
        """Parse a carrier callback body."""
        ...

    def validate_webhook_signature(self, body: bytes, headers: Mapping[str, str]) -> bool:
        """Validate webhook authenticity. Carriers without a scheme accept all."""
        return True

    @abstractmethod
    def map_status(self, raw_status: str | None) -> FaxStatus:
        """Map a raw carrier status to the canonical enumeration."""
        ...

    def validate_request(self, request: FaxSendRequest) -> None:
        """Reject malformed or oversized requests before any carrier call."""
        if not request.recipients:
            raise ValidationError("At least one recipient is required", error_code="NO_RECIPIENTS")
        for recipient in request.recipients:
            if not isinstance(recipient, str) or not recipient.strip():
                raise ValidationError(
                    "Recipients must be non-empty fax numbers",
                    error_code="INVALID_RECIPIENT",
                )
        if not request.documents:
            raise ValidationError("At least one document is required", error_code="NO_DOCUMENTS")

        for index, document in enumerate(request.documents):
            match document:
                case InlineDocument(filename=filename, content=content):
                    if not filename:
                        raise ValidationError(
                            f"Document {index + 1} has no filename",
                            error_code="INVALID_DOCUMENT",
                        )
                    if not content:
                        raise ValidationError(
                            f"Document {filename} is empty",
                            error_code="EMPTY_DOCUMENT",
                        )
                    if document.size > self._config.max_document_bytes:
                        raise ValidationError(
                            f"Document {filename} exceeds {self._config.max_document_bytes} bytes",
                            error_code="DOCUMENT_TOO_LARGE",
                        )
                case ExternalDocument(url=url):
                    parts = urlsplit(url)
                    if parts.scheme not in {"http", "https"} or not parts.netloc:
                        raise ValidationError(
                            f"Document {index + 1} URL is not fetchable",
                            error_code="INVALID_DOCUMENT_URL",
                        )
                case _:
                    raise ValidationError(
                        f"Document {index + 1} has unsupported type {type(document).__name__}",
                        error_code="INVALID_DOCUMENT",
                    )

    def send_sync(self, request: FaxSendRequest) -> SubmissionResult:
        """Validate, build and submit in one pass (sync)."""
        self.validate_request(request)
        payload = self.build_payload(request)
        return self.submit(payload)

    async def send(self, request: FaxSendRequest) -> SubmissionResult:
        """Async wrapper; delegates to the sync implementation in a worker thread."""
        return await anyio.to_thread.run_sync(self.send_sync, request)

    async def fetch_status(self, external_id: str) -> StatusSnapshot:
        return await anyio.to_thread.run_sync(self.get_fax_status, external_id)

    async def fetch_recent(self, since: datetime, until: datetime) -> list[StatusSnapshot]:
        return await anyio.to_thread.run_sync(self.list_recent_faxes, since, until)

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        operation: str,
    ) -> Any:
        """Issue one carrier call and classify failures into the error taxonomy."""
        client = self._get_client()
        url = f"{self.base_url}{path}"
        headers = self._auth_headers()

        try:
            if method == "POST":
                response = client.post(url, json=json_body, headers=headers)
            else:
                response = client.get(url, params=params, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning(
                "Carrier request timed out",
                extra={"carrier": self.kind.value, "operation": operation},
            )
            raise TransportError(
                message=f"{self.kind.value} {operation} timed out",
                error_code="TIMEOUT",
            ) from e
        except httpx.HTTPError as e:
            logger.warning(
                "Carrier request failed",
                extra={"carrier": self.kind.value, "operation": operation, "error": str(e)},
            )
            raise TransportError(
                message=f"HTTP error: {e!s}",
                error_code="HTTP_ERROR",
            ) from e

        body = self._decode_body(response)

        if response.status_code == 429 or response.status_code >= 500:
            logger.warning(
                "Carrier temporarily unavailable",
                extra={
                    "carrier": self.kind.value,
                    "operation": operation,
                    "status_code": response.status_code,
                },
            )
            raise TransportError(
                message=f"{self.kind.value} {operation} returned {response.status_code}",
                error_code=str(response.status_code),
                provider_response=body if isinstance(body, dict) else {"body": body},
            )

        if response.status_code >= 400:
            error_data = body if isinstance(body, dict) else {"body": body}
            logger.error(
                "Carrier rejected request",
                extra={
                    "carrier": self.kind.value,
                    "operation": operation,
                    "status_code": response.status_code,
                    "error": error_data,
                },
            )
            raise CarrierRejected(
                message=self._error_message(error_data) or f"{operation} rejected",
                error_code=str(response.status_code),
                provider_response=error_data,
            )

        return body

    @staticmethod
    def _decode_body(response: httpx.Response) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except (json.JSONDecodeError, ValueError):
            return {"raw": response.text}

    def _error_message(self, error_data: dict[str, Any]) -> str | None:
        for key in ("message", "Message", "error", "detail"):
            value = error_data.get(key)
            if isinstance(value, str) and value:
                return value
        errors = error_data.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            detail = errors[0].get("detail") or errors[0].get("title")
            if detail:
                return str(detail)
        return None
