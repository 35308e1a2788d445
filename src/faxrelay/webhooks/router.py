"""
FastAPI router for carrier fax callbacks.

Only signature failures are rejected. Everything else is acknowledged with
200 so carriers do not retry against an endpoint that cannot use the event;
processing problems are logged instead.
"""

import json
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel

from faxrelay.carriers.config import resolve_carrier_kind
from faxrelay.errors import WebhookParseError
from faxrelay.reconciliation.engine import ReconciliationEngine, SignalOutcome
from faxrelay.shared.logging import correlation_scope, get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks/fax", tags=["webhooks"])


class WebhookAck(BaseModel):
    ok: bool
    duplicate: bool = False
    ignored: bool = False
    outcome: str | None = None
    message: str | None = None


def get_engine(request: Request) -> ReconciliationEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Reconciliation engine not ready",
        )
    return engine


@router.post("/{carrier}", response_model=WebhookAck)
async def receive_fax_event(
    carrier: str,
    request: Request,
    engine: Annotated[ReconciliationEngine, Depends(get_engine)],
) -> WebhookAck:
    try:
        kind = resolve_carrier_kind(carrier)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown carrier") from None

    adapter = engine.carrier
    if kind != adapter.kind:
        logger.warning(
            "Webhook for inactive carrier",
            extra={"carrier": kind.value, "active_carrier": adapter.kind.value},
        )
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Carrier not active")

    body = await request.body()
    if not adapter.validate_webhook_signature(body, request.headers):
        logger.warning("Invalid webhook signature", extra={"carrier": kind.value})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        payload = json.loads(body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Webhook body is not JSON", extra={"carrier": kind.value, "bytes": len(body)})
        return WebhookAck(ok=False, ignored=True, message="Body is not JSON")
    if not isinstance(payload, dict):
        logger.warning("Webhook body is not an object", extra={"carrier": kind.value})
        return WebhookAck(ok=False, ignored=True, message="Body is not a JSON object")

    try:
        event = adapter.parse_webhook_event(payload)
    except WebhookParseError as e:
        logger.warning(
            "Unparseable fax webhook",
            extra={"carrier": kind.value, "error_code": e.error_code, "raw_payload": payload},
        )
        return WebhookAck(ok=False, ignored=True, message=e.message)

    with correlation_scope(event.event_id):
        outcome = await engine.handle_webhook(event)

    return WebhookAck(
        ok=outcome is not SignalOutcome.FAILED,
        duplicate=outcome is SignalOutcome.DUPLICATE,
        outcome=outcome.value,
    )
