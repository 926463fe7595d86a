"""
Structured logging configuration.

Two output modes, picked from ``settings.is_production``:

    production   one JSON object per line, request + broadcast context merged in
    development  coloured single-line output with a short request id and caller

Context is carried in a ContextVar so every log line emitted while a request
(or a broadcast inside it) is in flight is tagged without threading arguments
through the messaging code:

    with bind_log_context(broadcast_id="BRD-...", channel="email"):
        logger.info("Sent")
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator

from backend.app.core.config import settings

_log_context: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})

# LogRecord attributes passed via ``extra=`` that are copied into JSON output
_EXTRA_FIELDS = (
    "broadcast_id", "initiated_by", "recipient_count", "channel",
    "duration_ms", "status_code", "endpoint",
)

_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "google", "urllib3")


def set_request_context(**fields: Any) -> None:
    """Replace the log context wholesale. Called with no args to reset."""
    _log_context.set(dict(fields))


def get_request_context() -> Dict[str, Any]:
    return _log_context.get()


@contextmanager
def bind_log_context(**fields: Any) -> Iterator[Dict[str, Any]]:
    """Layer extra fields on top of the current context for a block."""
    merged = {**_log_context.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _log_context.set(merged)
    try:
        yield merged
    finally:
        _log_context.reset(token)


class JSONFormatter(logging.Formatter):
    """One JSON document per record, for log shipping."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "src": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(get_request_context())
        entry.update(
            (key, getattr(record, key)) for key in _EXTRA_FIELDS if hasattr(record, key)
        )
        if record.exc_info and record.exc_info[1]:
            exc = record.exc_info[1]
            entry["exc_type"] = type(exc).__name__
            entry["exc"] = str(exc)
        return json.dumps(entry, default=str)


class PrettyFormatter(logging.Formatter):
    """Coloured console output for local runs."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        ctx = get_request_context()

        tags = []
        if ctx.get("request_id"):
            tags.append(str(ctx["request_id"])[:8])
        if ctx.get("user"):
            tags.append(str(ctx["user"]))
        if ctx.get("broadcast_id"):
            tags.append(str(ctx["broadcast_id"]))
        prefix = f" [{' '.join(tags)}]" if tags else ""

        line = (
            f"{color}{self.formatTime(record, '%H:%M:%S')} {record.levelname:8s}{self.RESET}"
            f"{prefix} {record.name}: {record.getMessage()}"
        )
        if record.exc_info and record.exc_info[1]:
            line += f"\n  {type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
        return line


def setup_logging() -> None:
    """Install a single stdout handler on the root logger."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if settings.is_production else PrettyFormatter())
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
