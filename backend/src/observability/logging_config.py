"""Structured JSON logging configuration.

One JSON object per line on stdout, carrying the request ID and operator of
the request that produced it. Reconciliation code logs with plain
logging.getLogger(__name__) and passes identifiers via `extra`.
"""

import logging
import json
import sys
from datetime import datetime, timezone

from .request_id import get_operator_id, get_request_id

# `extra` keys copied into the JSON line when present on a record
EXTRA_FIELDS = (
    "provider_order_id",
    "storefront_order_id",
    "link_id",
    "link_status",
    "method",
    "path",
    "status_code",
    "duration_ms",
    "error_type",
)


class RequestIDFilter(logging.Filter):
    """Attach request_id and operator_id to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        record.operator_id = get_operator_id() or "-"
        return True


class JSONFormatter(logging.Formatter):
    """Format log records as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "request_id": getattr(record, "request_id", "no-request-id"),
            "operator_id": getattr(record, "operator_id", "-"),
            "function": record.funcName,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["error"] = str(record.exc_info[1])
            log_data["traceback"] = self.formatException(record.exc_info)

        for field in EXTRA_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        return json.dumps(log_data, default=str)


def configure_logging(level: str = "INFO", json_format: bool = True) -> None:
    """Configure application-wide logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: If True, use JSON formatter; otherwise a plain text line
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s [%(request_id)s %(operator_id)s] %(name)s: %(message)s"
        ))
    handler.addFilter(RequestIDFilter())
    root_logger.addHandler(handler)

    # Suppress noisy third-party loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
