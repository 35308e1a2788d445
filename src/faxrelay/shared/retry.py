"""
Caller-level retry policy for carrier and object-store calls.

Adapters make exactly one call per operation; whoever invokes them decides
how often to try again.
"""

import logging

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.stop import stop_base

from faxrelay.config import Settings
from faxrelay.errors import SigningError, TransportError
from faxrelay.shared.logging import get_logger

logger = get_logger(__name__)


class stop_after_signing_retry(stop_base):
    """Stop on the second signing failure, whatever failed in between."""

    def __init__(self) -> None:
        self.signing_failures = 0

    def __call__(self, retry_state: RetryCallState) -> bool:
        outcome = retry_state.outcome
        if outcome is None or not outcome.failed:
            return False
        if not isinstance(outcome.exception(), SigningError):
            return False
        self.signing_failures += 1
        return self.signing_failures > 1


def transport_retrying(settings: Settings) -> AsyncRetrying:
    """Retry ``TransportError`` with exponential backoff."""
    return AsyncRetrying(
        stop=stop_after_attempt(settings.submit_max_attempts),
        wait=wait_exponential(
            multiplier=settings.retry_backoff_seconds,
            max=settings.retry_backoff_max_seconds,
        ),
        retry=retry_if_exception_type(TransportError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def submission_retrying(settings: Settings) -> AsyncRetrying:
    """Retry ``TransportError`` with backoff and ``SigningError`` exactly once."""
    return AsyncRetrying(
        stop=stop_after_attempt(settings.submit_max_attempts) | stop_after_signing_retry(),
        wait=wait_exponential(
            multiplier=settings.retry_backoff_seconds,
            max=settings.retry_backoff_max_seconds,
        ),
        retry=retry_if_exception_type((TransportError, SigningError)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
