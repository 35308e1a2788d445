"""
Reconciliation of carrier status signals into fax records.

Webhook callbacks and poll sweeps both end in the same step: map the carrier
state, then attempt one compare-and-set transition. Terminal records never
move again, whichever path reports last.
"""

from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

import anyio

from faxrelay.carriers.interface import (
    CarrierWebhookEvent,
    FaxCarrier,
    FaxStatus,
    StatusSnapshot,
    allowed_predecessors,
)
from faxrelay.config import Settings
from faxrelay.errors import FaxEngineError, PersistenceConflict
from faxrelay.fax.repository import (
    FaxRecordGateway,
    FaxRecordRepository,
    GatewayFactory,
    SessionScope,
    StatusTransition,
)
from faxrelay.shared.logging import get_logger
from faxrelay.shared.retry import transport_retrying

logger = get_logger(__name__)


class SignalOutcome(str, Enum):
    """What happened to one status signal."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    DISCARDED_TERMINAL = "discarded_terminal"
    DISCARDED_STALE = "discarded_stale"
    CONFLICT = "conflict"
    UNKNOWN_RECORD = "unknown_record"
    FAILED = "failed"


@dataclass
class PollSummary:
    """Counters for one poll sweep."""

    window_start: datetime
    window_end: datetime
    fetched: int = 0
    applied: int = 0
    skipped: int = 0
    unknown: int = 0
    failed: int = 0
    fetch_failed: bool = False
    outcomes: dict[str, SignalOutcome] = field(default_factory=dict)

    def record(self, external_id: str, outcome: SignalOutcome) -> None:
        self.outcomes[external_id] = outcome
        match outcome:
            case SignalOutcome.APPLIED:
                self.applied += 1
            case SignalOutcome.UNKNOWN_RECORD:
                self.unknown += 1
            case SignalOutcome.FAILED:
                self.failed += 1
            case _:
                self.skipped += 1

    def as_log_fields(self) -> dict[str, Any]:
        fields = asdict(self)
        fields.pop("outcomes")
        return fields


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReconciliationEngine:
    """Applies webhook and poll signals to fax records.

    Each signal is its own unit of work with its own session. Failures are
    logged with context and reported as ``SignalOutcome.FAILED``; they never
    escape into other records.
    """

    def __init__(
        self,
        carrier: FaxCarrier,
        session_scope: SessionScope,
        settings: Settings,
        gateway_factory: GatewayFactory = FaxRecordRepository,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
    ) -> None:
        """Initialize the engine.

        Args:
            carrier: Active carrier adapter, used by the polling path.
            session_scope: Factory for transactional sessions (commit on exit).
            settings: Poll window, inter-record delay and retry policy.
            gateway_factory: Builds a persistence gateway for a session.
            clock: Source of "now"; injectable for tests.
            sleep: Awaitable delay between polled records.
        """
        self._carrier = carrier
        self._session_scope = session_scope
        self._settings = settings
        self._gateway_factory = gateway_factory
        self._clock = clock or _utcnow
        self._sleep = sleep

    @property
    def carrier(self) -> FaxCarrier:
        return self._carrier

    async def handle_webhook(self, event: CarrierWebhookEvent) -> SignalOutcome:
        """Apply one parsed carrier callback.

        The audit entry and the transition commit together, so a failed
        transition leaves no audit entry behind to block a redelivery.
        """
        log_context = {
            "event_id": event.event_id,
            "event_type": event.event_type,
            "carrier": event.carrier.value,
            "external_id": event.snapshot.external_id,
            "raw_status": event.snapshot.raw_status,
        }
        try:
            async with self._session_scope() as session:
                gateway = self._gateway_factory(session)
                if not await gateway.record_webhook_event(event):
                    logger.info("Duplicate webhook event ignored", extra=log_context)
                    return SignalOutcome.DUPLICATE
                outcome = await self._apply_snapshot(gateway, event.snapshot, source="webhook")
        except Exception:
            logger.exception(
                "Webhook event processing failed",
                extra={**log_context, "raw_payload": event.raw_payload},
            )
            return SignalOutcome.FAILED

        logger.info("Webhook event processed", extra={**log_context, "outcome": outcome.value})
        return outcome

    async def apply_polled_snapshot(self, snapshot: StatusSnapshot) -> SignalOutcome:
        """Apply one carrier record fetched by a poll sweep."""
        try:
            async with self._session_scope() as session:
                gateway = self._gateway_factory(session)
                return await self._apply_snapshot(gateway, snapshot, source="poll")
        except Exception:
            logger.exception(
                "Polled record update failed",
                extra={
                    "carrier": self._carrier.kind.value,
                    "external_id": snapshot.external_id,
                    "raw_status": snapshot.raw_status,
                    "raw_payload": snapshot.raw,
                },
            )
            return SignalOutcome.FAILED

    async def poll_once(self, now: datetime | None = None) -> PollSummary:
        """Run one poll sweep over the trailing lookback window."""
        window_end = now or self._clock()
        window_start = window_end - timedelta(hours=self._settings.poll_lookback_hours)
        summary = PollSummary(window_start=window_start, window_end=window_end)

        try:
            snapshots = await self._fetch_recent(window_start, window_end)
        except FaxEngineError as e:
            logger.exception(
                "Poll sweep could not fetch carrier records",
                extra={"carrier": self._carrier.kind.value, "error_kind": e.kind},
            )
            summary.fetch_failed = True
            return summary

        summary.fetched = len(snapshots)
        for index, snapshot in enumerate(snapshots):
            if index:
                await self._sleep(self._settings.poll_record_delay_seconds)
            outcome = await self.apply_polled_snapshot(snapshot)
            summary.record(snapshot.external_id, outcome)

        logger.info(
            "Poll sweep complete",
            extra={"carrier": self._carrier.kind.value, **summary.as_log_fields()},
        )
        return summary

    async def _fetch_recent(self, since: datetime, until: datetime) -> list[StatusSnapshot]:
        retrying = transport_retrying(self._settings)
        return await retrying(self._carrier.fetch_recent, since, until)

    async def _apply_snapshot(
        self,
        gateway: FaxRecordGateway,
        snapshot: StatusSnapshot,
        source: str,
    ) -> SignalOutcome:
        """Map-and-transition step shared by both signal paths."""
        log_context = {
            "source": source,
            "carrier": self._carrier.kind.value,
            "external_id": snapshot.external_id,
            "raw_status": snapshot.raw_status,
            "proposed_status": snapshot.status.value,
        }

        record = await gateway.get_record(snapshot.external_id)
        if record is None:
            logger.warning("Status signal for unknown fax", extra=log_context)
            return SignalOutcome.UNKNOWN_RECORD

        current = record.status
        log_context["current_status"] = current.value

        if current.is_terminal:
            if snapshot.status != current:
                logger.info("Discarding signal for terminal fax", extra=log_context)
            return SignalOutcome.DISCARDED_TERMINAL

        if snapshot.status.rank < current.rank:
            logger.info("Discarding stale status signal", extra=log_context)
            return SignalOutcome.DISCARDED_STALE

        transition = self._build_transition(snapshot)
        try:
            await self._compare_and_set(gateway, snapshot.external_id, transition)
        except PersistenceConflict:
            logger.info("Lost status race; signal discarded", extra=log_context)
            return SignalOutcome.CONFLICT

        logger.info("Fax status updated", extra=log_context)
        return SignalOutcome.APPLIED

    async def _compare_and_set(
        self,
        gateway: FaxRecordGateway,
        external_id: str,
        transition: StatusTransition,
    ) -> None:
        applied = await gateway.compare_and_set_status(
            external_id,
            allowed_predecessors(transition.status),
            transition,
        )
        if not applied:
            raise PersistenceConflict(
                f"Status of {external_id} changed before {transition.status.value} could be applied",
                error_code="CAS_LOST",
            )

    def _build_transition(self, snapshot: StatusSnapshot) -> StatusTransition:
        now = self._clock()
        status = snapshot.status

        sent_at = snapshot.sent_at
        if sent_at is None and status in (FaxStatus.SENDING, FaxStatus.DELIVERED):
            sent_at = now
        completed_at = snapshot.completed_at
        if completed_at is None and status.is_terminal:
            completed_at = now
        if not status.is_terminal:
            completed_at = None

        return StatusTransition(
            status=status,
            original_status=snapshot.raw_status,
            pages=snapshot.pages,
            cost=snapshot.cost,
            sent_at=sent_at,
            completed_at=completed_at,
            error_message=None if status is FaxStatus.DELIVERED else snapshot.error_message,
        )
