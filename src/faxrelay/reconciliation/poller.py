"""
Background status poller.

Runs a reconciliation poll sweep on a fixed cadence, independent of webhook
handling. Stopping waits for an in-flight sweep to finish before the task is
cancelled.
"""

import asyncio
from uuid import uuid4

from faxrelay.reconciliation.engine import PollSummary, ReconciliationEngine
from faxrelay.shared.logging import correlation_scope, get_logger

logger = get_logger(__name__)


class StatusPoller:
    """Fixed-interval driver for ``ReconciliationEngine.poll_once``."""

    def __init__(
        self,
        engine: ReconciliationEngine,
        interval_seconds: float = 60.0,
        shutdown_grace_seconds: float = 5.0,
    ) -> None:
        self._engine = engine
        self._interval_seconds = interval_seconds
        self._shutdown_grace_seconds = shutdown_grace_seconds
        self._wake = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self.last_summary: PollSummary | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            logger.warning("Status poller start ignored, sweep loop already active")
            return

        self._wake.clear()
        self._task = asyncio.create_task(self._sweep_forever(), name="fax-status-poller")
        logger.info("Status poller started", extra={"interval_seconds": self._interval_seconds})

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return

        self._wake.set()
        try:
            await asyncio.wait_for(task, timeout=self._shutdown_grace_seconds)
        except TimeoutError:
            logger.warning(
                "Poll sweep cancelled at shutdown",
                extra={"grace_seconds": self._shutdown_grace_seconds},
            )
        logger.info("Status poller stopped")

    async def _sweep_forever(self) -> None:
        while not self._wake.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("Poll sweep failed")
            try:
                # Sleeps for one interval unless stop() wakes it first
                await asyncio.wait_for(self._wake.wait(), timeout=self._interval_seconds)
            except TimeoutError:
                pass

    async def run_once(self) -> PollSummary:
        """Run a single poll sweep and keep its summary."""
        with correlation_scope(f"poll-{uuid4().hex[:12]}"):
            logger.debug("Starting poll sweep")
            self.last_summary = await self._engine.poll_once()
        return self.last_summary
