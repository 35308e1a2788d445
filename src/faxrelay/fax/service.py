"""
Fax submission service.

Submits through the active carrier under the caller-level retry policy, then
records the transmission in ``queued`` so reconciliation can track it.
"""

from dataclasses import dataclass
from uuid import UUID

from faxrelay.carriers.interface import FaxCarrier, FaxSendRequest, FaxStatus, SubmissionResult
from faxrelay.config import Settings
from faxrelay.context import CallerContext
from faxrelay.fax.models import FaxRecord
from faxrelay.fax.repository import FaxRecordRepository, GatewayFactory, SessionScope
from faxrelay.shared.logging import get_logger, mask_number
from faxrelay.shared.retry import submission_retrying

logger = get_logger(__name__)


@dataclass(frozen=True)
class SubmissionReceipt:
    """What the caller gets back for an accepted fax."""

    record_id: UUID | None
    external_id: str
    carrier: str
    status: FaxStatus
    friendly_id: str | None = None

    @property
    def tracked(self) -> bool:
        return self.record_id is not None


class FaxSubmissionService:
    """Caller-facing entry point for sending a fax."""

    def __init__(
        self,
        carrier: FaxCarrier,
        session_scope: SessionScope,
        settings: Settings,
        gateway_factory: GatewayFactory = FaxRecordRepository,
    ) -> None:
        self._carrier = carrier
        self._session_scope = session_scope
        self._settings = settings
        self._gateway_factory = gateway_factory

    async def submit(
        self,
        request: FaxSendRequest,
        caller: CallerContext | None = None,
    ) -> SubmissionReceipt:
        """Send ``request`` and persist its initial record.

        Validation and carrier rejections surface immediately. Transport
        failures are retried with backoff and signing failures once.

        Raises:
            FaxEngineError: Any taxonomy error that survived the retry policy.
        """
        caller = caller or CallerContext()
        self._carrier.validate_request(request)

        retrying = submission_retrying(self._settings)
        result: SubmissionResult = await retrying(self._carrier.send, request)

        logger.info(
            "Fax accepted by carrier",
            extra={
                "carrier": self._carrier.kind.value,
                "external_id": result.external_id,
                "recipients": [mask_number(r) for r in request.recipients],
                "user_id": caller.user_id,
            },
        )

        record = FaxRecord(
            carrier=self._carrier.kind.value,
            provider_fax_id=result.external_id,
            friendly_id=result.friendly_id,
            user_id=caller.user_id,
            status=FaxStatus.QUEUED,
            original_status=result.original_status,
            recipients=list(request.recipients),
            document_urls=list(result.document_urls),
            sender_id=request.sender_id or None,
            subject=request.subject,
            client_reference=request.client_reference or caller.client_reference,
            record_metadata={**request.metadata, "source_app": caller.source_app},
        )
        try:
            async with self._session_scope() as session:
                record_id = await self._gateway_factory(session).create_record(record)
        except Exception:
            # Carrier already accepted the fax; report it untracked rather than failing the send
            logger.exception(
                "Fax sent but record could not be saved",
                extra={"carrier": self._carrier.kind.value, "external_id": result.external_id},
            )
            record_id = None

        return SubmissionReceipt(
            record_id=record_id,
            external_id=result.external_id,
            carrier=self._carrier.kind.value,
            status=FaxStatus.QUEUED,
            friendly_id=result.friendly_id,
        )
