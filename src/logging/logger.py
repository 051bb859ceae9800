# src/logging/logger.py — v2
"""Logger setup for the ``factgraph`` hierarchy.

Console output goes to stderr; an optional log file rotates by size.
Both handlers share one formatter and the run-context filter.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

from factgraph.logging.context import ContextFilter, RunLogContext

_ROOT_LOGGER = "factgraph"
_QUIET_LIBRARIES = ("httpx", "httpcore")


def _context_of(record: logging.LogRecord) -> RunLogContext:
    ctx = getattr(record, "run_context", None)
    return ctx if isinstance(ctx, RunLogContext) else RunLogContext()


def _timestamp(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


class JsonFormatter(logging.Formatter):
    """One JSON object per line; run context under ``context`` when bound."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": _timestamp(record).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        ctx = _context_of(record).as_dict()
        if ctx:
            entry["context"] = ctx
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """``<time> [LEVEL] logger run=<id> [stage] - message``"""

    def format(self, record: logging.LogRecord) -> str:
        ctx = _context_of(record)
        line = f"{_timestamp(record):%Y-%m-%d %H:%M:%S} [{record.levelname:8s}] {record.name}"
        if ctx.run_id:
            line += f" run={ctx.run_id}"
        if ctx.stage:
            line += f" [{ctx.stage}]"
        line += f" - {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    log_file: str | Path | None = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """Configure the root factgraph logger; safe to call more than once."""
    root = logging.getLogger(_ROOT_LOGGER)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = JsonFormatter() if log_format == "json" else TextFormatter()
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
        )
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(ContextFilter())
        root.addHandler(handler)

    for name in _QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)
