"""
Persistence gateway for fax records and webhook audit entries.

Status changes go through a single conditional UPDATE so two writers racing
on the same fax cannot both win, whichever process they run in.
"""

from collections.abc import Callable, Collection
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol
from uuid import UUID, uuid4

from sqlalchemy import case, func, literal, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from faxrelay.carriers.interface import CarrierWebhookEvent, FaxStatus
from faxrelay.fax.models import FaxRecord, FaxWebhookEvent
from faxrelay.shared.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class StatusTransition:
    """Fields written together with a status change."""

    status: FaxStatus
    original_status: str
    pages: int | None = None
    cost: Decimal | None = None
    sent_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None


class FaxRecordGateway(Protocol):
    """Protocol for fax record persistence."""

    async def create_record(self, record: FaxRecord) -> UUID:
        """Persist a new record and return its internal ID."""
        ...

    async def get_record(self, external_id: str) -> FaxRecord | None:
        """Get a record by carrier-assigned ID."""
        ...

    async def compare_and_set_status(
        self,
        external_id: str,
        expected: Collection[FaxStatus],
        transition: StatusTransition,
    ) -> bool:
        """Apply ``transition`` only if the current status is in ``expected``."""
        ...

    async def record_webhook_event(self, event: CarrierWebhookEvent) -> bool:
        """Store an audit entry; False when the event ID was already stored."""
        ...


class FaxRecordRepository:
    """SQLAlchemy implementation of ``FaxRecordGateway``."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async database session.
        """
        self._session = session

    async def create_record(self, record: FaxRecord) -> UUID:
        self._session.add(record)
        await self._session.flush()
        return record.id

    async def get_record(self, external_id: str) -> FaxRecord | None:
        stmt = (
            select(FaxRecord)
            .where(FaxRecord.provider_fax_id == external_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def compare_and_set_status(
        self,
        external_id: str,
        expected: Collection[FaxStatus],
        transition: StatusTransition,
    ) -> bool:
        """Atomically write ``transition`` if the status is still in ``expected``.

        Sent and completed timestamps are only filled when empty. Pages and
        cost only ever grow.

        Returns:
            True if the row was updated.
        """
        if not expected:
            return False

        values: dict[str, Any] = {
            "status": transition.status,
            "original_status": transition.original_status,
            "updated_at": func.now(),
        }
        if transition.sent_at is not None:
            values["sent_at"] = func.coalesce(
                FaxRecord.sent_at, literal(transition.sent_at, FaxRecord.sent_at.type)
            )
        if transition.completed_at is not None:
            values["completed_at"] = func.coalesce(
                FaxRecord.completed_at,
                literal(transition.completed_at, FaxRecord.completed_at.type),
            )
        if transition.pages is not None:
            values["pages"] = case(
                (
                    or_(FaxRecord.pages.is_(None), FaxRecord.pages < transition.pages),
                    literal(transition.pages, FaxRecord.pages.type),
                ),
                else_=FaxRecord.pages,
            )
        if transition.cost is not None:
            values["cost"] = case(
                (
                    or_(FaxRecord.cost.is_(None), FaxRecord.cost < transition.cost),
                    literal(transition.cost, FaxRecord.cost.type),
                ),
                else_=FaxRecord.cost,
            )
        if transition.error_message:
            values["error_message"] = transition.error_message

        stmt = (
            update(FaxRecord)
            .where(
                FaxRecord.provider_fax_id == external_id,
                FaxRecord.status.in_(list(expected)),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        applied = result.rowcount == 1

        logger.debug(
            "Compare-and-set status",
            extra={
                "external_id": external_id,
                "status": transition.status.value,
                "applied": applied,
            },
        )
        return applied

    async def record_webhook_event(self, event: CarrierWebhookEvent) -> bool:
        """Insert the audit entry unless its external event ID already exists.

        Must be the first write of its unit of work: on dialects without an
        ON CONFLICT clause a duplicate rolls the session back.
        """
        row = {
            "id": uuid4(),
            "external_event_id": event.event_id,
            "carrier": event.carrier.value,
            "event_type": event.event_type,
            "provider_fax_id": event.snapshot.external_id,
            "raw_payload": event.raw_payload,
            "received_at": event.received_at,
        }

        dialect = self._session.get_bind().dialect.name
        if dialect in {"postgresql", "sqlite"}:
            if dialect == "postgresql":
                from sqlalchemy.dialects.postgresql import insert
            else:
                from sqlalchemy.dialects.sqlite import insert

            stmt = (
                insert(FaxWebhookEvent)
                .values(**row)
                .on_conflict_do_nothing(index_elements=[FaxWebhookEvent.external_event_id])
                .returning(FaxWebhookEvent.id)
            )
            result = await self._session.execute(stmt)
            return result.scalar_one_or_none() is not None

        existing = await self._session.execute(
            select(FaxWebhookEvent.id).where(FaxWebhookEvent.external_event_id == event.event_id)
        )
        if existing.scalar_one_or_none() is not None:
            return False
        self._session.add(FaxWebhookEvent(**row))
        try:
            await self._session.flush()
        except IntegrityError:
            await self._session.rollback()
            return False
        return True

    async def count_webhook_events(self, event_id: str) -> int:
        stmt = select(func.count()).select_from(FaxWebhookEvent).where(
            FaxWebhookEvent.external_event_id == event_id
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one())


SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]
GatewayFactory = Callable[[AsyncSession], FaxRecordGateway]
