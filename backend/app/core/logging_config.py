"""
Structured logging configuration.

Provides:
    • JSON lines for production (one object per record)
    • Coloured console lines for development
    • Request context (request_id, client_ip, endpoint, method) attached to
      every record by a filter, so formatters never reach into globals

Usage:
    from backend.app.core.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("Confirmation stored", extra={"report_id": "r-17", "attempt": 2})
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from backend.app.core.config import settings

_request_context: ContextVar[Dict[str, Any]] = ContextVar(
    "request_context", default={}
)

# Structured fields lifted from `extra=` into the output
EXTRA_FIELDS = (
    "report_id", "user_id", "attempt", "segment_count", "zone_count",
    "route_count", "cell_count", "duration_ms", "status_code", "endpoint",
)

QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "aiosqlite")


def set_request_context(**kwargs: Any) -> None:
    """Replace the request-scoped context; call with no arguments to clear it."""
    _request_context.set(kwargs)


def get_request_context() -> Dict[str, Any]:
    return _request_context.get()


def _extras(record: logging.LogRecord) -> Dict[str, Any]:
    return {key: getattr(record, key) for key in EXTRA_FIELDS if hasattr(record, key)}


class RequestContextFilter(logging.Filter):
    """Stamp the current request context onto each record as `ctx`."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.ctx = dict(get_request_context())
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        ctx = getattr(record, "ctx", None)
        if ctx:
            entry["request"] = ctx
        entry.update(_extras(record))
        if record.exc_info and record.exc_info[1] is not None:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class PrettyFormatter(logging.Formatter):
    """`HH:MM:SS LEVEL [request] logger: message  (k=v …)` with ANSI colours."""

    COLORS = {
        "DEBUG":    "\033[36m",
        "INFO":     "\033[32m",
        "WARNING":  "\033[33m",
        "ERROR":    "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ctx = getattr(record, "ctx", None) or {}
        request = f" [{ctx['request_id'][:8]}]" if ctx.get("request_id") else ""

        line = (
            f"{color}{self.formatTime(record, '%H:%M:%S')} {record.levelname:<8}{self.RESET}"
            f"{request} {record.name}: {record.getMessage()}"
        )
        extras = _extras(record)
        if extras:
            line += "  (" + " ".join(f"{k}={v}" for k, v in extras.items()) + ")"
        if record.exc_info and record.exc_info[1] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: Optional[str] = None, json_output: Optional[bool] = None) -> None:
    """
    Install a single stdout handler on the root logger.

    Defaults: level from settings.LOG_LEVEL, JSON output in production.
    """
    use_json = settings.is_production if json_output is None else json_output

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestContextFilter())
    handler.setFormatter(JSONFormatter() if use_json else PrettyFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Named logger — call once per module."""
    return logging.getLogger(name)
