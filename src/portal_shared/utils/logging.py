"""Logging for the payments backend.

Every record carries the correlation ID of the request (or sweep run) that
produced it. On Lambda each record is one JSON object so CloudWatch Logs
Insights can filter on payment_id, member_id or event_id; locally a plain text
line is easier to read.

Usage:
    from portal_shared.utils.logging import get_logger, log_payment_operation

    logger = get_logger(__name__)
    log_payment_operation(logger, "checkout_created", payment_id="PAY-...", member_id="...")
"""

import json
import logging
import os
import uuid
from contextvars import ContextVar
from typing import Any

NO_CORRELATION_ID = "-"

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# Attributes every LogRecord has; anything else came in through `extra`.
_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "correlation_id", "taskName"}

WEBHOOK_RESULT_LEVELS = {
    "error": logging.ERROR,
    "duplicate": logging.WARNING,
    "skipped": logging.WARNING,
}


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Bind a correlation ID to the current context, generating one if needed."""
    cid = correlation_id or uuid.uuid4().hex
    _correlation_id.set(cid)
    return cid


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def clear_correlation_id() -> None:
    _correlation_id.set(None)


class CorrelationIdFilter(logging.Filter):
    """Stamps the current correlation ID on each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or NO_CORRELATION_ID
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record, including any `extra` context fields."""

    def format(self, record: logging.LogRecord) -> str:
        body: dict[str, Any] = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "correlation_id": getattr(record, "correlation_id", NO_CORRELATION_ID),
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRIBUTES and value is not None:
                body[key] = value
        if record.exc_info:
            body["exception"] = self.formatException(record.exc_info)
        return json.dumps(body, default=str)


class TextFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s")


def configure_logging(level: int = logging.INFO, *, json_output: bool | None = None) -> None:
    """Install the portal handler on the root logger once.

    Args:
        level: Root log level
        json_output: Force JSON or text; defaults to JSON when running on Lambda
    """
    root = logging.getLogger()
    root.setLevel(level)
    if any(isinstance(h.formatter, (JsonFormatter, TextFormatter)) for h in root.handlers):
        return

    if json_output is None:
        json_output = "AWS_LAMBDA_FUNCTION_NAME" in os.environ

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter() if json_output else TextFormatter())
    handler.addFilter(CorrelationIdFilter())
    root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if not any(isinstance(f, CorrelationIdFilter) for f in logger.filters):
        logger.addFilter(CorrelationIdFilter())
    return logger


def _context(**fields: Any) -> dict[str, Any]:
    return {key: value for key, value in fields.items() if value is not None}


def log_payment_operation(
    logger: logging.Logger,
    operation: str,
    *,
    error: str | None = None,
    **fields: Any,
) -> None:
    """Log one step of a payment's lifecycle.

    Logged at ERROR when `error` is given, INFO otherwise. Fields such as
    payment_id, member_id, session_id and amount_cents go into the message
    and, under JSON output, into their own keys.
    """
    context = _context(operation=operation, error=error, **fields)
    details = " ".join(f"{key}={value}" for key, value in context.items() if key != "operation")
    logger.log(
        logging.ERROR if error else logging.INFO,
        "Payment %s %s",
        operation,
        details,
        extra=context,
    )


def log_webhook_event(
    logger: logging.Logger,
    event_type: str | None,
    event_id: str | None,
    *,
    result: str | None = None,
    error: str | None = None,
    **fields: Any,
) -> None:
    """Log a webhook delivery; errors at ERROR, duplicates and skips at WARNING."""
    context = _context(event_type=event_type, event_id=event_id, result=result, error=error, **fields)
    logger.log(
        WEBHOOK_RESULT_LEVELS.get(result or "", logging.INFO),
        "Webhook %s (%s) result=%s%s",
        event_type,
        event_id,
        result,
        f" error={error}" if error else "",
        extra=context,
    )
