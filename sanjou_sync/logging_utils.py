"""
Structured JSON logging for the sync core.

Log lines are single JSON objects so a host application's log collector
can filter sync activity by partition and replica:

    {"timestamp": "...", "level": "WARNING", "component": "remote.reconciler",
     "message": "Failed to push update: ...",
     "sync": {"partition_key": "user-123", "client_id": "1709..."}}

The package never installs handlers on its own; SyncApp calls
configure_structured_logging() only when JSON logging is enabled.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

LOGGER_NAMESPACE = "sanjou_sync"

# Fields the reconciler and other components attach through SyncLoggerAdapter
SYNC_CONTEXT_FIELDS = ("partition_key", "client_id", "collection", "origin")

_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}


def resolve_level(level: str | int | None, default: int = logging.INFO) -> int:
    """Turn a level name ('debug', 'WARNING') or number into a logging level."""
    if level is None or level == "":
        return default
    if isinstance(level, int):
        return level
    name = level.strip().upper()
    if name.isdigit():
        return int(name)
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else default


def component_name(logger_name: str) -> str:
    """'sanjou_sync.remote.reconciler' -> 'remote.reconciler'."""
    prefix = LOGGER_NAMESPACE + "."
    return logger_name[len(prefix):] if logger_name.startswith(prefix) else logger_name


class StructuredJsonFormatter(logging.Formatter):
    """
    Formats records as one JSON object per line.

    Sync context fields are grouped under "sync"; any other extra field
    is emitted at the top level, stringified when it is not JSON
    serializable.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "component": component_name(record.name),
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        sync_context: dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key.startswith("_"):
                continue
            target = sync_context if key in SYNC_CONTEXT_FIELDS else log_obj
            target[key] = _jsonable(value)
        if sync_context:
            log_obj["sync"] = sync_context

        return json.dumps(log_obj, default=str)


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


def configure_structured_logging(
    level: str | int | None = logging.INFO,
    logger_name: str = LOGGER_NAMESPACE,
) -> logging.Logger:
    """
    Send the package's logs to stdout as JSON.

    Args:
        level: Level name or number (default: INFO)
        logger_name: Logger to configure (default: the package logger)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(resolve_level(level))
    logger.propagate = False

    return logger


class SyncLoggerAdapter(logging.LoggerAdapter):
    """Tags every message with a fixed sync context (partition, replica)."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        # Call-site extras win over the adapter's fixed context
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs
