"""Tests for the Telnyx carrier adapter (sync, mocked HTTP and object store)."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import httpx
import pytest

from faxrelay.carriers.config import CarrierConfig, CarrierKind
from faxrelay.carriers.interface import ExternalDocument, FaxSendRequest, FaxStatus, InlineDocument
from faxrelay.carriers.telnyx import TelnyxAdapter
from faxrelay.errors import CarrierRejected, SigningError, TransportError, ValidationError, WebhookParseError
from faxrelay.storage.signed_url import SignedUrlGrant, SignedUrlIssuer

SIGNED_URL = (
    "https://storage.example.com/fax-docs/fax/ref/document_1_1709288100.pdf"
    "?X-Amz-Algorithm=AWS4-HMAC-SHA256&X-Amz-Signature=abc"
)


@pytest.fixture
def telnyx_config(carrier_config: CarrierConfig) -> CarrierConfig:
    return carrier_config.model_copy(update={"provider": CarrierKind.TELNYX})


@pytest.fixture
def mock_client() -> MagicMock:
    return MagicMock(spec=httpx.Client)


@pytest.fixture
def calls() -> list[str]:
    return []


@pytest.fixture
def issuer(calls: list[str]) -> MagicMock:
    issuer = MagicMock(spec=SignedUrlIssuer)
    issued_at = datetime(2024, 3, 1, 10, 15, tzinfo=timezone.utc)

    def build_object_key(reference: str, index: int, suffix: str = "pdf") -> str:
        return f"fax/{reference}/document_{index}_1709288100.{suffix}"

    def upload(content: bytes, key: str, content_type: str = "application/pdf") -> None:
        calls.append("upload")

    def grant(key: str, ttl_seconds: int | None = None) -> SignedUrlGrant:
        calls.append("grant")
        return SignedUrlGrant(
            url=SIGNED_URL,
            key=key,
            issued_at=issued_at,
            expires_at=issued_at + timedelta(hours=12),
            method="native",
        )

    issuer.build_object_key.side_effect = build_object_key
    issuer.upload.side_effect = upload
    issuer.grant.side_effect = grant
    return issuer


@pytest.fixture
def adapter(
    telnyx_config: CarrierConfig,
    issuer: MagicMock,
    mock_client: MagicMock,
    calls: list[str],
) -> TelnyxAdapter:
    def post(url: str, **kwargs) -> httpx.Response:
        calls.append("submit")
        return httpx.Response(
            status_code=202,
            json={
                "data": {
                    "id": "tx-fax-1",
                    "status": "queued",
                    "created_at": "2024-03-01T10:15:00Z",
                    "media_url": kwargs["json"]["media_url"],
                }
            },
        )

    mock_client.post.side_effect = post
    return TelnyxAdapter(telnyx_config, issuer=issuer, http_client=mock_client)


class TestTelnyxSubmit:
    def test_inline_document_uploaded_and_signed_before_submission(
        self,
        adapter: TelnyxAdapter,
        issuer: MagicMock,
        mock_client: MagicMock,
        fax_request: FaxSendRequest,
        calls: list[str],
    ) -> None:
        result = adapter.send_sync(fax_request)

        assert calls == ["upload", "grant", "submit"]
        assert result.external_id == "tx-fax-1"
        assert result.status == FaxStatus.QUEUED
        assert result.document_urls == (SIGNED_URL,)

        upload_args = issuer.upload.call_args
        assert upload_args[0][0] == b"%PDF-1.4 test document"
        assert upload_args.kwargs["content_type"] == "application/pdf"
        assert issuer.grant.call_args[0][0] == upload_args[0][1]

        body = mock_client.post.call_args.kwargs["json"]
        assert body == {
            "connection_id": "conn-123",
            "to": "+61255501234",
            "from": "+61255509999",
            "media_url": SIGNED_URL,
        }
        assert mock_client.post.call_args[0][0] == "https://api.telnyx.com/v2/faxes"
        assert mock_client.post.call_args.kwargs["headers"]["Authorization"] == "Bearer KEY_TELNYX_TEST_123456"

    def test_external_document_skips_object_store(
        self,
        adapter: TelnyxAdapter,
        issuer: MagicMock,
        mock_client: MagicMock,
    ) -> None:
        request = FaxSendRequest(
            recipients=("+61255501234",),
            documents=(ExternalDocument(url="https://files.example.com/a.pdf"),),
        )

        adapter.send_sync(request)

        issuer.upload.assert_not_called()
        issuer.grant.assert_not_called()
        body = mock_client.post.call_args.kwargs["json"]
        assert body["media_url"] == "https://files.example.com/a.pdf"
        assert body["from"] == "+15550001111"

    def test_signing_failure_prevents_submission(
        self,
        adapter: TelnyxAdapter,
        issuer: MagicMock,
        mock_client: MagicMock,
        fax_request: FaxSendRequest,
    ) -> None:
        issuer.grant.side_effect = SigningError("no signature", error_code="SIGNING_FAILED")

        with pytest.raises(SigningError):
            adapter.send_sync(fax_request)

        mock_client.post.assert_not_called()

    def test_upload_failure_prevents_submission(
        self,
        adapter: TelnyxAdapter,
        issuer: MagicMock,
        mock_client: MagicMock,
        fax_request: FaxSendRequest,
    ) -> None:
        issuer.upload.side_effect = TransportError("store down", error_code="UPLOAD_FAILED")

        with pytest.raises(TransportError):
            adapter.send_sync(fax_request)

        issuer.grant.assert_not_called()
        mock_client.post.assert_not_called()

    @pytest.mark.parametrize(
        ("recipients", "documents", "error_code"),
        [
            (("+1", "+2"), (InlineDocument(filename="a.pdf", content=b"x"),), "TOO_MANY_RECIPIENTS"),
            (
                ("+1",),
                (
                    InlineDocument(filename="a.pdf", content=b"x"),
                    InlineDocument(filename="b.pdf", content=b"y"),
                ),
                "TOO_MANY_DOCUMENTS",
            ),
        ],
    )
    def test_validation_rejects_more_than_one(
        self,
        adapter: TelnyxAdapter,
        issuer: MagicMock,
        recipients,
        documents,
        error_code: str,
    ) -> None:
        request = FaxSendRequest(recipients=recipients, documents=documents)

        with pytest.raises(ValidationError) as exc_info:
            adapter.send_sync(request)

        assert exc_info.value.error_code == error_code
        issuer.upload.assert_not_called()

    def test_submit_missing_id(self, telnyx_config: CarrierConfig, issuer: MagicMock) -> None:
        client = MagicMock(spec=httpx.Client)
        client.post.return_value = httpx.Response(status_code=200, json={"data": {}})
        adapter = TelnyxAdapter(telnyx_config, issuer=issuer, http_client=client)

        with pytest.raises(CarrierRejected) as exc_info:
            adapter.submit({"media_url": SIGNED_URL})

        assert exc_info.value.error_code == "MISSING_EXTERNAL_ID"

    def test_submit_validation_error_from_carrier(self, telnyx_config: CarrierConfig, issuer: MagicMock) -> None:
        client = MagicMock(spec=httpx.Client)
        client.post.return_value = httpx.Response(
            status_code=422,
            json={"errors": [{"code": "10015", "title": "Bad Request", "detail": "Invalid 'to' number"}]},
        )
        adapter = TelnyxAdapter(telnyx_config, issuer=issuer, http_client=client)

        with pytest.raises(CarrierRejected) as exc_info:
            adapter.submit({"media_url": SIGNED_URL})

        assert str(exc_info.value) == "Invalid 'to' number"
        assert exc_info.value.error_code == "422"


class TestTelnyxStatusQueries:
    def test_get_fax_status_delivered(self, telnyx_config: CarrierConfig, issuer: MagicMock) -> None:
        client = MagicMock(spec=httpx.Client)
        client.get.return_value = httpx.Response(
            status_code=200,
            json={
                "data": {
                    "id": "tx-fax-1",
                    "status": "delivered",
                    "page_count": 4,
                    "updated_at": "2024-03-01T10:20:00Z",
                }
            },
        )
        adapter = TelnyxAdapter(telnyx_config, issuer=issuer, http_client=client)

        snapshot = adapter.get_fax_status("tx-fax-1")

        completed = datetime(2024, 3, 1, 10, 20, tzinfo=timezone.utc)
        assert snapshot.status == FaxStatus.DELIVERED
        assert snapshot.pages == 4
        assert snapshot.sent_at == completed
        assert snapshot.completed_at == completed

    def test_list_recent_faxes(self, telnyx_config: CarrierConfig, issuer: MagicMock) -> None:
        client = MagicMock(spec=httpx.Client)
        client.get.return_value = httpx.Response(
            status_code=200,
            json={
                "data": [
                    {"id": "tx-1", "status": "sending"},
                    {"id": "tx-2", "status": "failed", "failure_reason": "no_answer"},
                    {"status": "queued"},
                ]
            },
        )
        adapter = TelnyxAdapter(telnyx_config, issuer=issuer, http_client=client)
        until = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

        snapshots = adapter.list_recent_faxes(until - timedelta(hours=12), until)

        assert [(s.external_id, s.status) for s in snapshots] == [
            ("tx-1", FaxStatus.SENDING),
            ("tx-2", FaxStatus.NO_ANSWER),
        ]
        assert snapshots[1].error_message == "no_answer"
        params = client.get.call_args.kwargs["params"]
        assert params["filter[created_at][gte]"] == "2024-03-01T00:00:00+00:00"
        assert params["filter[created_at][lte]"] == "2024-03-01T12:00:00+00:00"
        assert params["page[number]"] == 1
        client.get.assert_called_once()

    def test_list_recent_faxes_follows_pages(self, telnyx_config: CarrierConfig, issuer: MagicMock) -> None:
        client = MagicMock(spec=httpx.Client)
        client.get.side_effect = [
            httpx.Response(
                status_code=200,
                json={
                    "data": [{"id": "tx-1", "status": "sending"}],
                    "meta": {"page_number": 1, "page_size": 250, "total_pages": 2, "total_results": 251},
                },
            ),
            httpx.Response(
                status_code=200,
                json={
                    "data": [{"id": "tx-251", "status": "delivered"}],
                    "meta": {"page_number": 2, "page_size": 250, "total_pages": 2, "total_results": 251},
                },
            ),
        ]
        adapter = TelnyxAdapter(telnyx_config, issuer=issuer, http_client=client)
        until = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

        snapshots = adapter.list_recent_faxes(until - timedelta(hours=12), until)

        assert [s.external_id for s in snapshots] == ["tx-1", "tx-251"]
        pages = [c.kwargs["params"]["page[number]"] for c in client.get.call_args_list]
        assert pages == [1, 2]


class TestTelnyxWebhook:
    def _payload(self, **fax_fields) -> dict:
        return {
            "data": {
                "id": "tx-evt-1",
                "event_type": "fax.failed",
                "occurred_at": "2024-03-01T10:30:00Z",
                "payload": {"fax_id": "tx-fax-1", **fax_fields},
            }
        }

    def test_parse_busy_failure(self, adapter: TelnyxAdapter) -> None:
        event = adapter.parse_webhook_event(self._payload(status="failed", failure_reason="user_busy"))

        assert event.event_id == "tx-evt-1"
        assert event.event_type == "fax.failed"
        assert event.carrier == CarrierKind.TELNYX
        assert event.snapshot.external_id == "tx-fax-1"
        assert event.snapshot.status == FaxStatus.BUSY
        assert event.snapshot.completed_at == datetime(2024, 3, 1, 10, 30, tzinfo=timezone.utc)

    def test_parse_missing_fields(self, adapter: TelnyxAdapter) -> None:
        with pytest.raises(WebhookParseError) as missing_status:
            adapter.parse_webhook_event(self._payload())
        with pytest.raises(WebhookParseError) as missing_data:
            adapter.parse_webhook_event({"meta": {}})

        assert missing_status.value.error_code == "MISSING_STATUS"
        assert missing_data.value.error_code == "MISSING_DATA"
