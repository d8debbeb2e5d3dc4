from __future__ import annotations

import json
import logging
import os
import sys
import traceback
from datetime import datetime, timezone
from typing import Any

from .config import Settings, get_settings

ROOT_LOGGER = "boardline"

# LogRecord attributes that are never copied as extra fields.
_RESERVED = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "message",
    "taskName",
}


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with ``extra=`` fields merged in."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "pid": os.getpid(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED:
                payload[key] = value
        if record.exc_info:
            exc_type, exc, _ = record.exc_info
            payload["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc) if exc else None,
                "stacktrace": traceback.format_exception(*record.exc_info),
            }
        return json.dumps(payload, ensure_ascii=False, default=str, separators=(",", ":"))


def setup_logging(settings: Settings | None = None) -> logging.Logger:
    """Configure the ``boardline`` logger tree once; safe to call repeatedly."""
    settings = settings or get_settings()
    log = logging.getLogger(ROOT_LOGGER)
    log.setLevel(getattr(logging, settings.log_level, logging.INFO))
    if not log.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            JSONFormatter() if settings.log_json else logging.Formatter("%(levelname)s %(name)s %(message)s")
        )
        log.addHandler(handler)
    return log
