"""
Structured logging with per-run correlation IDs.

Modules log through plain ``logging.getLogger(__name__)``; the audit
pipeline additionally emits named events through AuditEventLogger, which
never lets a logging failure escape into an audit.
"""

import json
import logging
import sys
import threading
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

run_id: ContextVar[Optional[str]] = ContextVar("run_id", default=None)

_SENSITIVE_KEYS = {"credential", "password", "secret", "token"}

_STANDARD_ATTRS = {
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "lineno", "funcName", "created",
    "msecs", "relativeCreated", "thread", "threadName",
    "processName", "process", "getMessage", "exc_info",
    "exc_text", "stack_info", "run_id", "taskName", "message",
}


def new_run_id() -> str:
    return uuid.uuid4().hex[:12]


class RunIdFilter(logging.Filter):
    """Adds the current run id to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = run_id.get() or "-"
        return True


class StructuredFormatter(logging.Formatter):
    """Formats records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "thread": threading.current_thread().name,
            "run_id": getattr(record, "run_id", "-"),
        }

        if record.exc_info:
            entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        extra = {}
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key.startswith("_"):
                continue
            try:
                json.dumps(value)
                extra[key] = value
            except (TypeError, ValueError):
                extra[key] = str(value)
        if extra:
            entry["extra"] = extra

        return json.dumps(entry, default=str, ensure_ascii=False)


def configure_logging(level: str = "INFO", structured: bool = False) -> None:
    """Install a single stderr handler on the package logger."""
    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(RunIdFilter())
    if structured:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)-7s [%(run_id)s] %(name)s: %(message)s"
        ))

    root = logging.getLogger("fleet_auditor")
    root.handlers = [handler]
    root.setLevel(level.upper())
    root.propagate = False


def redact(fields: dict[str, Any]) -> dict[str, Any]:
    return {k: ("***" if k.lower() in _SENSITIVE_KEYS else v) for k, v in fields.items()}


class AuditEventLogger:
    """
    Fire-and-forget event sink.

    event() swallows every exception raised by handlers or formatters:
    an audit must never fail because its log could not be written.
    """

    def __init__(self, name: str = "fleet_auditor.events"):
        self.logger = logging.getLogger(name)

    def event(self, name: str, level: int = logging.INFO, **fields: Any) -> None:
        try:
            self.logger.log(level, name, extra={"event": name, "fields": redact(fields)})
        except Exception:  # noqa: BLE001
            pass

    def warning(self, name: str, **fields: Any) -> None:
        self.event(name, logging.WARNING, **fields)

    def error(self, name: str, **fields: Any) -> None:
        self.event(name, logging.ERROR, **fields)
