"""Structured JSON logging for better observability.

Outputs logs in JSON format for easy parsing by log aggregation tools.
Queue transitions carry job fields (job_id, status, attempts, ...) as
top-level keys.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

# Fields promoted to top-level keys when present on a record
STANDARD_FIELDS = (
    "job_id", "job_type", "status", "attempts", "max_attempts",
    "idempotency_key", "event", "transaction_hash", "error_code",
    "duration_ms", "next_attempt_at",
)

# Attributes every LogRecord has; never copied into the JSON body
_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName", "levelname",
    "levelno", "lineno", "module", "msecs", "pathname", "process",
    "processName", "relativeCreated", "stack_info", "exc_info", "exc_text",
    "thread", "threadName", "message", "asctime", "taskName",
})


class JSONFormatter(logging.Formatter):
    """Format log records as JSON with structured fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in STANDARD_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_obj[field] = value

        if record.exc_info:
            log_obj["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        # Any other extra fields
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key in STANDARD_FIELDS or key.startswith("_"):
                continue
            log_obj[key] = value

        return json.dumps(log_obj, default=str, ensure_ascii=False)


class StructuredLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds structured context to all log messages."""

    def __init__(self, logger: logging.Logger, extra: Optional[dict] = None):
        super().__init__(logger, extra or {})

    def process(self, msg, kwargs):
        extra = kwargs.get("extra", {})
        extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs

    def with_context(self, **context) -> "StructuredLoggerAdapter":
        """Create a new adapter with additional context."""
        return StructuredLoggerAdapter(self.logger, {**self.extra, **context})


def _install_handler(handler: logging.Handler, level: str) -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # Noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def setup_json_logging(level: str = "INFO") -> None:
    """
    Configure root logger for JSON output.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    _install_handler(handler, level)


def setup_text_logging(level: str = "INFO") -> None:
    """Configure root logger for human-readable output (local development)."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    _install_handler(handler, level)


def get_structured_logger(name: str, **context) -> StructuredLoggerAdapter:
    """
    Get a structured logger with optional context.

    Args:
        name: Logger name
        **context: Default context fields (job_id, job_type, etc.)
    """
    return StructuredLoggerAdapter(logging.getLogger(name), context)


def job_logger(job, name: str = "chain_worker.queue.engine") -> StructuredLoggerAdapter:
    """Create a logger pre-configured for a specific job."""
    return get_structured_logger(
        name,
        job_id=job.id,
        job_type=job.type,
        idempotency_key=job.idempotency_key,
    )
