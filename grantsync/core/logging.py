"""Structured logging for the grantsync controller."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

from pythonjsonlogger.json import JsonFormatter

from grantsync.core.config import settings

# record attributes promoted to top-level JSON keys when passed in extra
CONTEXT_FIELDS = ("binding", "namespace", "template", "event")

QUIET_LOGGERS = {
    "kubernetes": logging.WARNING,
    "urllib3": logging.WARNING,
    "kopf": logging.INFO,
    "kopf.objects": logging.WARNING,
}


class ReconcileJsonFormatter(JsonFormatter):
    """JSON formatter stamping each record with the controller identity and
    whatever reconciliation context the caller supplied."""

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["controller"] = f"{settings.app_name}/{settings.app_version}"
        log_record["cluster"] = settings.cluster_name
        log_record["environment"] = settings.environment.value
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_record[name] = value


def setup_logging() -> None:
    """Send controller logs to stdout, as JSON unless ``log_json`` is off."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(settings.log_level.value)
    if settings.log_json:
        handler.setFormatter(ReconcileJsonFormatter("%(level)s %(name)s %(message)s"))
    else:
        handler.setFormatter(logging.Formatter(settings.log_format))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level.value)

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_event(logger: logging.Logger, level: str, event: str, **kwargs) -> None:
    """Log ``event`` with its keyword details both in the message and as extra."""
    message = f"{event}: {json.dumps(kwargs, default=str)}" if kwargs else event
    getattr(logger, level)(message, extra={"event": event, **kwargs})
