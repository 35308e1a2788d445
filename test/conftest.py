"""
Pytest configuration and shared fixtures.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import httpx
import pytest
import pytest_asyncio

from faxrelay.carriers.config import CarrierConfig, CarrierKind
from faxrelay.carriers.interface import (
    CarrierWebhookEvent,
    FaxCarrier,
    FaxSendRequest,
    FaxStatus,
    InlineDocument,
    StatusSnapshot,
    SubmissionResult,
)
from faxrelay.carriers.status_map import map_notifyre_status
from faxrelay.config import Settings
from faxrelay.fax.models import FaxRecord
from faxrelay.fax.repository import FaxRecordRepository
from faxrelay.shared.database import DatabaseManager
from faxrelay.storage.config import ObjectStoreConfig

TEST_ACCESS_KEY = "AKIDTESTFAXRELAY0001"
TEST_SECRET_KEY = "test-secret-access-key-0123456789abcdef"


class FakeCarrier(FaxCarrier):
    """Scripted carrier: no HTTP, records what it was asked to do."""

    kind = CarrierKind.NOTIFYRE

    def __init__(self, config: CarrierConfig) -> None:
        super().__init__(config, http_client=MagicMock(spec=httpx.Client))
        self.snapshots: list[StatusSnapshot] = []
        self.list_error: Exception | None = None
        self.list_calls = 0
        self.submit_errors: list[Exception] = []
        self.submit_calls = 0
        self.submitted: list[dict[str, Any]] = []

    @property
    def base_url(self) -> str:
        return "https://carrier.test"

    def _auth_headers(self) -> dict[str, str]:
        return {}

    def map_status(self, raw_status: str | None) -> FaxStatus:
        return map_notifyre_status(raw_status)

    def build_payload(self, request: FaxSendRequest) -> dict[str, Any]:
        return {"recipients": list(request.recipients)}

    def submit(self, payload: dict[str, Any]) -> SubmissionResult:
        self.submit_calls += 1
        if self.submit_errors:
            raise self.submit_errors.pop(0)
        self.submitted.append(payload)
        return SubmissionResult(
            external_id=f"fake-{len(self.submitted)}",
            status=FaxStatus.QUEUED,
            original_status="Submitted",
            submitted_at=datetime.now(timezone.utc),
        )

    def get_fax_status(self, external_id: str) -> StatusSnapshot:
        for snapshot in self.snapshots:
            if snapshot.external_id == external_id:
                return snapshot
        raise KeyError(external_id)

    def list_recent_faxes(self, since: datetime, until: datetime) -> list[StatusSnapshot]:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        return list(self.snapshots)

    def parse_webhook_event(self, payload: dict[str, Any]) -> CarrierWebhookEvent:
        raise NotImplementedError


def make_snapshot(external_id: str, raw_status: str, **kwargs: Any) -> StatusSnapshot:
    return StatusSnapshot(
        external_id=external_id,
        raw_status=raw_status,
        status=map_notifyre_status(raw_status),
        **kwargs,
    )


def make_event(event_id: str, external_id: str, raw_status: str, **kwargs: Any) -> CarrierWebhookEvent:
    return CarrierWebhookEvent(
        event_id=event_id,
        event_type="fax.status",
        carrier=CarrierKind.NOTIFYRE,
        snapshot=make_snapshot(external_id, raw_status, **kwargs),
        received_at=datetime.now(timezone.utc),
        raw_payload={"EventID": event_id, "Payload": {"ID": external_id, "Status": raw_status}},
    )


@pytest.fixture
def carrier_config() -> CarrierConfig:
    return CarrierConfig(
        provider=CarrierKind.NOTIFYRE,
        notifyre_api_key="notifyre-test-key-123456",
        notifyre_webhook_secret="notifyre-webhook-secret",
        telnyx_api_key="KEY_TELNYX_TEST_123456",
        telnyx_connection_id="conn-123",
        telnyx_sender_id="+15550001111",
        request_timeout_seconds=5,
    )


@pytest.fixture
def object_store_config() -> ObjectStoreConfig:
    return ObjectStoreConfig(
        bucket="fax-docs",
        endpoint_url="https://storage.example.com",
        region="us-east-1",
        access_key_id=TEST_ACCESS_KEY,
        secret_access_key=TEST_SECRET_KEY,
    )


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    return Settings(
        app_env="dev",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'faxrelay.db'}",
        poll_enabled=False,
        poll_record_delay_seconds=0.1,
        submit_max_attempts=3,
        retry_backoff_seconds=0,
        retry_backoff_max_seconds=0,
    )


@pytest.fixture
def fake_carrier(carrier_config: CarrierConfig) -> FakeCarrier:
    return FakeCarrier(carrier_config)


@pytest.fixture
def fax_request() -> FaxSendRequest:
    return FaxSendRequest(
        recipients=("+61255501234",),
        documents=(InlineDocument(filename="letter.pdf", content=b"%PDF-1.4 test document"),),
        sender_id="+61255509999",
        subject="Signed contract",
    )


@pytest_asyncio.fixture
async def database(test_settings: Settings) -> AsyncGenerator[DatabaseManager, None]:
    """File-backed SQLite database with all tables created."""
    manager = DatabaseManager(test_settings.database_url)
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
def seed_record(database: DatabaseManager) -> Callable[..., Awaitable[FaxRecord]]:
    async def _seed(external_id: str, status: FaxStatus = FaxStatus.QUEUED, **fields: Any) -> FaxRecord:
        record = FaxRecord(
            carrier=CarrierKind.NOTIFYRE.value,
            provider_fax_id=external_id,
            status=status,
            original_status=fields.pop("original_status", "Submitted"),
            recipients=fields.pop("recipients", ["+61255501234"]),
            **fields,
        )
        async with database.session() as session:
            await FaxRecordRepository(session).create_record(record)
        return record

    return _seed


@pytest.fixture
def load_record(database: DatabaseManager) -> Callable[[str], Awaitable[FaxRecord | None]]:
    async def _load(external_id: str) -> FaxRecord | None:
        async with database.session() as session:
            return await FaxRecordRepository(session).get_record(external_id)

    return _load
