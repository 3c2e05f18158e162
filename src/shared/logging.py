"""Structured JSON logging with deployment_id support and secret redaction."""
from __future__ import annotations

import contextvars
import json
import logging
from datetime import datetime, timezone
from typing import Any, Iterable

from src.deploy_shared.constants import REDACTED

# Context variable for the id of the deployment run being logged
deployment_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "deployment_id", default=""
)

_TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """Custom JSON log formatter."""

    def __init__(self, service_name: str = "unknown") -> None:
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service_name": self.service_name,
            "logger": record.name,
            "deployment_id": deployment_id_var.get(""),
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = str(record.exc_info[1])
        return json.dumps(log_entry)


class SecretRedactionFilter(logging.Filter):
    """Replace every registered secret in a record with ``******``.

    The message is rendered once, scrubbed, and stored back on the record
    with its args cleared so formatters never see the raw values.
    """

    def __init__(self, secrets: Iterable[str] = ()) -> None:
        super().__init__()
        self._secrets: set[str] = set()
        for secret in secrets:
            self.add_secret(secret)

    def add_secret(self, secret: str | None) -> None:
        # Very short values would mask unrelated text.
        if secret and len(secret) >= 3:
            self._secrets.add(secret)

    @property
    def secrets(self) -> frozenset[str]:
        return frozenset(self._secrets)

    def redact(self, text: str) -> str:
        for secret in sorted(self._secrets, key=len, reverse=True):
            text = text.replace(secret, REDACTED)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        record.msg = self.redact(record.getMessage())
        record.args = None
        return True


# Shared across handlers so that secrets registered mid-run (e.g. database
# credentials read from the host) are masked everywhere.
_redaction_filter = SecretRedactionFilter()


def get_redaction_filter() -> SecretRedactionFilter:
    """Return the process-wide redaction filter."""
    return _redaction_filter


def register_secret(secret: str | None) -> None:
    """Mask *secret* in all subsequent log output."""
    _redaction_filter.add_secret(secret)


def setup_logging(
    service_name: str,
    level: str = "INFO",
    json_output: bool = True,
) -> logging.Logger:
    """Configure logging for the deployment tool.

    Handlers are attached to the ``src`` package logger so that every
    module logger (``logging.getLogger(__name__)``) inherits them.

    Args:
        service_name: Name recorded in each JSON entry.
        level: Log level string (e.g. "INFO", "DEBUG").
        json_output: Emit JSON lines when True, plain text otherwise.

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger("src")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter(service_name=service_name))
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))
    handler.addFilter(_redaction_filter)
    logger.addHandler(handler)
    logger.propagate = False

    return logger
