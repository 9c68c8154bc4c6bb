# src/logging/logger.py — v1
"""Formatters and one-shot configuration for the ``regtruth`` logger tree.

Modules log through ``logging.getLogger(__name__)`` and pass structured
payloads as ``extra={"data": {...}}``. setup_logging() installs handlers
on the package root only, so host applications keep their own root
configuration.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from regtruth.logging.context import get_context
from regtruth.logging.handlers import ContextFilter, create_rotating_handler

ROOT_LOGGER = "regtruth"


def _record_context(record: logging.LogRecord) -> dict[str, Any]:
    stamped = getattr(record, "context", None)
    return stamped if stamped is not None else get_context().as_dict()


def _record_time(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


class JsonFormatter(logging.Formatter):
    """Line-delimited JSON, one object per record.

    Keys: timestamp, level, logger, message, plus ``context`` (bound ids),
    ``data`` (structured extra) and ``exception`` when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": _record_time(record).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = _record_context(record)
        if context:
            entry["context"] = context
        data = getattr(record, "data", None)
        if data:
            entry["data"] = data
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Single-line console output: ``time [LEVEL] logger [stage/worker] (ids) - msg``."""

    def format(self, record: logging.LogRecord) -> str:
        context = _record_context(record)
        line = f"{_record_time(record):%Y-%m-%d %H:%M:%S} [{record.levelname:8s}] {record.name}"
        if context.get("stage"):
            line += f" [{context['stage']}/{context.get('worker') or '-'}]"
        ids = [context[key] for key in ("evidence_id", "rule_id") if context.get(key)]
        if ids:
            line += f" ({', '.join(ids)})"
        line += f" - {record.getMessage()}"
        if record.exc_info and record.exc_info[1] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def get_logger(name: str) -> logging.Logger:
    """Child of the package root logger."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    log_file: str | Path | None = None,
    rotation: str = "10MB",
    retention: int = 30,
) -> None:
    """(Re)configure the package root logger.

    Calling it again replaces the previous handlers. Console output goes
    to stderr so CLI results on stdout stay machine-readable; ``log_file``
    adds a size-rotated file with the same formatter.
    """
    root = logging.getLogger(ROOT_LOGGER)
    resolved = logging.getLevelName(level.upper())
    root.setLevel(resolved if isinstance(resolved, int) else logging.INFO)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = JsonFormatter() if log_format == "json" else TextFormatter()

    console = logging.StreamHandler(sys.stderr)
    console.addFilter(ContextFilter())
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        file_handler = create_rotating_handler(str(log_file), rotation=rotation, retention=retention)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
