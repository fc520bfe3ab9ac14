from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from crmhub.context import get_actor_id, get_correlation_id, get_log_context


_BASE_RECORD_KEYS = set(logging.makeLogRecord({}).__dict__.keys())
_KNOWN_FIELDS = {
    "method",
    "path",
    "status_code",
    "duration_ms",
    "status",
    "error",
    "event_name",
    "event_type",
    "action",
    "resource",
    "entity_type",
    "entity_id",
    "record_id",
    "user_id",
    "profile_id",
    "role",
    "role_count",
    "permission_count",
    "user_roles",
    "delegations",
    "count",
    "purged",
    "task",
    "rows_affected",
    "user_roles_expired",
    "delegations_expired",
    "cutoff",
    "kind",
    "severity",
    "terms",
    "hits",
    "board_id",
    "task_id",
    "purchase_order_id",
    "journal_entry_id",
    "payment_id",
}
class CorrelationIdFilter(logging.Filter):
    """Fills ``correlation_id``/``actor_id`` on records created before the record factory was installed."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in get_log_context().items():
            if not getattr(record, key, None):
                setattr(record, key, value)
        return True


_DEFAULT_RECORD_FACTORY = logging.getLogRecordFactory()


def _record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _DEFAULT_RECORD_FACTORY(*args, **kwargs)
    record.correlation_id = get_correlation_id()
    record.actor_id = get_actor_id()
    return record


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "actor_id": getattr(record, "actor_id", None),
        }

        extras: dict[str, Any] = {
            key: value
            for key, value in record.__dict__.items()
            if key in _KNOWN_FIELDS and key not in _BASE_RECORD_KEYS
        }
        if record.exc_info:
            extras["exception"] = self.formatException(record.exc_info)

        error_value = extras.get("error")
        if isinstance(error_value, str):
            extras["error"] = error_value[:500]

        payload["fields"] = extras
        return json.dumps(payload, default=str)


_PLAIN_FORMAT = "%(asctime)s %(levelname)-7s %(name)s [%(correlation_id)s] %(message)s"

# the request middleware already logs every request; sqlalchemy echo is controlled by DATABASE_ECHO
_QUIET_LOGGERS = {"uvicorn.access": logging.WARNING, "sqlalchemy.engine": logging.WARNING, "celery": logging.INFO}


def configure_logging() -> None:
    """Route every logger to stdout. ``LOG_FORMAT=plain`` switches JSON off for local runs."""

    root_logger = logging.getLogger()
    if getattr(root_logger, "_crmhub_configured", False):
        return

    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level)
    if os.getenv("LOG_FORMAT", "json").lower() == "plain":
        handler.setFormatter(logging.Formatter(_PLAIN_FORMAT))
    else:
        handler.setFormatter(JsonLogFormatter())
    handler.addFilter(CorrelationIdFilter())

    root_logger.handlers.clear()
    root_logger.filters.clear()
    root_logger.setLevel(level)
    logging.setLogRecordFactory(_record_factory)
    root_logger.addHandler(handler)
    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(max(level, quiet_level))
    root_logger._crmhub_configured = True  # type: ignore[attr-defined]
