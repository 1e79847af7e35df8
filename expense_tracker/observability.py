"""Structured logging for the API.

All records carry timestamp, level, logger name and message. Extra fields such
as user_id, operation or error_code are emitted when present on the record.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any

SLOW_QUERY_MS = 1000
VERY_SLOW_QUERY_MS = 2000

EXTRA_FIELDS = (
    "user_id",
    "operation",
    "event",
    "severity",
    "error_code",
    "path",
    "duration_ms",
    "slow_query",
    "result_count",
    "query",
    "details",
)

logger = logging.getLogger(__name__)


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in EXTRA_FIELDS:
            val = record.__dict__.get(key)
            if val is not None:
                log[key] = val
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", fmt: str = "json") -> None:
    logging.root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if any(getattr(h, "expense_tracker_handler", False) for h in logging.root.handlers):
        return
    handler = logging.StreamHandler()
    handler.expense_tracker_handler = True
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")
        )
    logging.root.addHandler(handler)


def summarize_query(
    *,
    page: int | None = None,
    limit: int | None = None,
    sort: str | None = None,
    filters: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Reduce query parameters to what is safe to log (no search terms)."""
    active_filters = {key: value for key, value in (filters or {}).items() if value is not None}
    return {
        "page": page,
        "limit": limit,
        "sort": sort,
        "has_filters": bool(active_filters),
    }


def log_query_attempt(
    operation: str,
    user_id: int | None,
    *,
    success: bool,
    duration_ms: int,
    query: dict[str, Any] | None = None,
    result_count: int | None = None,
    error: str | None = None,
) -> None:
    extra = {
        "operation": operation,
        "user_id": user_id,
        "duration_ms": duration_ms,
        "slow_query": duration_ms > SLOW_QUERY_MS,
        "query": query,
        "result_count": result_count,
    }
    if not success:
        logger.error("Query failed: %s (%s)", operation, error or "unknown error", extra=extra)
    elif duration_ms > VERY_SLOW_QUERY_MS:
        logger.warning("Slow query detected: %s took %dms", operation, duration_ms, extra=extra)
    else:
        logger.debug("Query completed: %s", operation, extra=extra)


def log_mutation(
    operation: str,
    user_id: int | None,
    *,
    success: bool,
    error: str | None = None,
    **context: Any,
) -> None:
    extra = {"operation": operation, "user_id": user_id, "details": context or None}
    if success:
        logger.info("%s succeeded", operation, extra=extra)
    else:
        logger.warning("%s failed: %s", operation, error or "unknown error", extra=extra)


def log_security_event(
    event: str,
    user_id: int | None,
    details: dict[str, Any] | None = None,
    severity: str = "medium",
) -> None:
    extra = {
        "event": event,
        "user_id": user_id,
        "severity": severity,
        "details": details,
    }
    if severity == "high":
        logger.error("Security event: %s", event, extra=extra)
    else:
        logger.warning("Security event: %s", event, extra=extra)
