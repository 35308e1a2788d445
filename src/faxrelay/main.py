"""
FastAPI application entry point.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from faxrelay.carriers.factory import build_carrier
from faxrelay.context import EngineContext
from faxrelay.fax.service import FaxSubmissionService
from faxrelay.reconciliation.engine import ReconciliationEngine
from faxrelay.reconciliation.poller import StatusPoller
from faxrelay.shared.database import DatabaseManager
from faxrelay.shared.logging import get_logger, setup_logging
from faxrelay.webhooks.router import router as fax_webhooks_router

logger = get_logger(__name__)


def create_app(context: EngineContext | None = None) -> FastAPI:
    """Build the application around an explicit engine context."""
    context = context or EngineContext.from_env()
    settings = context.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        setup_logging(settings.log_level)

        database = DatabaseManager(settings.database_url, echo=settings.debug)
        if settings.app_env == "dev":
            await database.create_all()
        carrier = build_carrier(context.carrier, context.object_store)
        engine = ReconciliationEngine(carrier, database.session, settings)
        poller = StatusPoller(engine, interval_seconds=settings.poll_interval_seconds)

        app.state.context = context
        app.state.database = database
        app.state.engine = engine
        app.state.submissions = FaxSubmissionService(carrier, database.session, settings)
        app.state.poller = poller

        logger.info(
            "Application starting",
            extra={
                "app_env": settings.app_env,
                "carrier": carrier.kind.value,
                "poll_enabled": settings.poll_enabled,
            },
        )
        if settings.poll_enabled:
            await poller.start()
        try:
            yield
        finally:
            await poller.stop()
            carrier.close()
            await database.close()
            logger.info("Application stopped")

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(fax_webhooks_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app
