"""
Structured JSON logging.

One JSON object per line. Context travels in ``extra={...}``; values under
credential-looking keys are masked before they are written, and the current
correlation ID (a webhook event ID or poll sweep ID) is attached when set.
"""

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# LogRecord attributes that are never treated as extra context
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}

_SENSITIVE_MARKERS = ("secret", "token", "api_key", "password", "authorization")

_QUIET_LIBRARIES = ("httpx", "httpcore", "botocore", "boto3", "s3transfer", "sqlalchemy.engine")


def mask_secret(value: str | None) -> str:
    """Mask a credential for logs, keeping a short prefix."""
    if not value:
        return ""
    if len(value) <= 8:
        return "*" * len(value)
    return value[:4] + "*" * (len(value) - 4)


def mask_number(value: str | None) -> str:
    """Mask a fax number, keeping the last four digits."""
    if not value:
        return ""
    if len(value) <= 4:
        return value
    return "*" * (len(value) - 4) + value[-4:]


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in _SENSITIVE_MARKERS)


class StructuredFormatter(logging.Formatter):
    """Render a record and its extra context as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = correlation_id_var.get()
        if correlation_id:
            entry["correlation_id"] = correlation_id

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS:
                continue
            if isinstance(value, str) and _is_sensitive(key):
                value = mask_secret(value)
            entry[f"extra_{key}" if key in entry else key] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def get_logger(name: str) -> logging.Logger:
    """Return the module logger.

    Before ``setup_logging`` has configured the root logger, the module
    logger writes through its own JSON handler so nothing is lost during
    imports and scripts.
    """
    logger = logging.getLogger(name)
    if not logger.handlers and not logging.getLogger().handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)
    return logger


def setup_logging(level: str = "INFO") -> None:
    """Route every ``faxrelay`` logger through one JSON handler on the root."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())

    root = logging.getLogger()
    root.setLevel(level.upper())
    root.handlers = [handler]

    for logger in logging.Logger.manager.loggerDict.values():
        if isinstance(logger, logging.Logger) and logger.name.startswith("faxrelay"):
            logger.handlers = []

    for name in _QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def correlation_scope(correlation_id: str) -> Iterator[None]:
    """Tag every record logged inside the block with ``correlation_id``."""
    token = correlation_id_var.set(correlation_id)
    try:
        yield
    finally:
        correlation_id_var.reset(token)
