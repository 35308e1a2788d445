"""Tests for the carrier interface: status ordering, request validation, parsing helpers."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from faxrelay.carriers.config import CarrierConfig
from faxrelay.carriers.interface import (
    TERMINAL_STATUSES,
    ExternalDocument,
    FaxSendRequest,
    FaxStatus,
    InlineDocument,
    allowed_predecessors,
    parse_carrier_timestamp,
    parse_cost,
    parse_pages,
)
from faxrelay.errors import ValidationError

from conftest import FakeCarrier


class TestFaxStatus:
    def test_terminal_statuses(self) -> None:
        assert TERMINAL_STATUSES == {
            FaxStatus.DELIVERED,
            FaxStatus.FAILED,
            FaxStatus.BUSY,
            FaxStatus.NO_ANSWER,
            FaxStatus.CANCELLED,
        }
        assert not FaxStatus.QUEUED.is_terminal
        assert not FaxStatus.SENDING.is_terminal

    def test_progress_order(self) -> None:
        assert FaxStatus.QUEUED.rank < FaxStatus.PROCESSING.rank < FaxStatus.SENDING.rank
        assert all(status.rank > FaxStatus.SENDING.rank for status in TERMINAL_STATUSES)

    def test_wire_values(self) -> None:
        assert FaxStatus.NO_ANSWER.value == "no-answer"
        assert FaxStatus("cancelled") is FaxStatus.CANCELLED


class TestAllowedPredecessors:
    def test_terminal_target_accepts_any_non_terminal(self) -> None:
        assert allowed_predecessors(FaxStatus.DELIVERED) == {
            FaxStatus.QUEUED,
            FaxStatus.PROCESSING,
            FaxStatus.SENDING,
        }

    def test_progress_target_accepts_only_earlier_or_equal(self) -> None:
        assert allowed_predecessors(FaxStatus.QUEUED) == {FaxStatus.QUEUED}
        assert allowed_predecessors(FaxStatus.PROCESSING) == {FaxStatus.QUEUED, FaxStatus.PROCESSING}

    def test_never_contains_terminal(self) -> None:
        for target in FaxStatus:
            assert not allowed_predecessors(target) & TERMINAL_STATUSES


class TestValidateRequest:
    def _request(self, **overrides) -> FaxSendRequest:
        fields = {
            "recipients": ("+61255501234",),
            "documents": (InlineDocument(filename="a.pdf", content=b"%PDF"),),
        }
        fields.update(overrides)
        return FaxSendRequest(**fields)

    def test_valid_request_passes(self, fake_carrier: FakeCarrier) -> None:
        fake_carrier.validate_request(self._request())

    @pytest.mark.parametrize(
        ("overrides", "error_code"),
        [
            ({"recipients": ()}, "NO_RECIPIENTS"),
            ({"recipients": ("  ",)}, "INVALID_RECIPIENT"),
            ({"documents": ()}, "NO_DOCUMENTS"),
            ({"documents": (InlineDocument(filename="a.pdf", content=b""),)}, "EMPTY_DOCUMENT"),
            ({"documents": (InlineDocument(filename="", content=b"x"),)}, "INVALID_DOCUMENT"),
            ({"documents": (ExternalDocument(url="ftp://host/a.pdf"),)}, "INVALID_DOCUMENT_URL"),
            ({"documents": ("not-a-document",)}, "INVALID_DOCUMENT"),
        ],
    )
    def test_rejects_malformed(self, fake_carrier: FakeCarrier, overrides, error_code: str) -> None:
        with pytest.raises(ValidationError) as exc_info:
            fake_carrier.validate_request(self._request(**overrides))

        assert exc_info.value.error_code == error_code
        assert exc_info.value.kind == "validation"

    def test_rejects_oversized_document(self) -> None:
        carrier = FakeCarrier(CarrierConfig(notifyre_api_key="k", max_document_bytes=10))
        request = self._request(documents=(InlineDocument(filename="big.pdf", content=b"x" * 11),))

        with pytest.raises(ValidationError) as exc_info:
            carrier.validate_request(request)

        assert exc_info.value.error_code == "DOCUMENT_TOO_LARGE"

    def test_send_sync_validates_before_submitting(self, fake_carrier: FakeCarrier) -> None:
        with pytest.raises(ValidationError):
            fake_carrier.send_sync(self._request(recipients=()))

        assert fake_carrier.submit_calls == 0


class TestParsingHelpers:
    def test_parse_iso_timestamp(self) -> None:
        parsed = parse_carrier_timestamp("2024-03-01T10:15:00Z")
        assert parsed == datetime(2024, 3, 1, 10, 15, tzinfo=timezone.utc)

    def test_parse_naive_timestamp_assumes_utc(self) -> None:
        parsed = parse_carrier_timestamp("2024-03-01T10:15:00")
        assert parsed is not None
        assert parsed.tzinfo == timezone.utc

    def test_parse_unix_seconds(self) -> None:
        assert parse_carrier_timestamp(1709288100) == datetime(2024, 3, 1, 10, 15, tzinfo=timezone.utc)
        assert parse_carrier_timestamp("1709288100") == datetime(2024, 3, 1, 10, 15, tzinfo=timezone.utc)

    def test_parse_invalid_timestamp(self) -> None:
        assert parse_carrier_timestamp("yesterday") is None
        assert parse_carrier_timestamp(None) is None

    def test_parse_pages_and_cost(self) -> None:
        assert parse_pages("3") == 3
        assert parse_pages(-1) is None
        assert parse_pages("three") is None
        assert parse_cost("0.35") == Decimal("0.35")
        assert parse_cost(0.1) == Decimal("0.1")
        assert parse_cost("free") is None
        assert parse_cost(-2) is None
