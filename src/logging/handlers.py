# src/logging/handlers.py — v1
"""Handler and filter plumbing for the regtruth log stream.

The file handler rotates on size; rotated files are kept by count, so
``log_retention`` bounds disk use for long-running worker pools.
"""

from __future__ import annotations

import logging
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path

from regtruth.logging.context import get_context

_SIZE_PATTERN = re.compile(r"^(?P<count>\d+)\s*(?P<unit>[KMG]?B)?$", re.IGNORECASE)
_MULTIPLIERS = {"B": 1, "KB": 1 << 10, "MB": 1 << 20, "GB": 1 << 30}


def parse_size(size_str: str) -> int:
    """Turn ``"10MB"``, ``"512 kb"`` or ``"2048"`` into a byte count."""
    match = _SIZE_PATTERN.match(size_str.strip())
    if match is None:
        raise ValueError(f"Invalid size format: {size_str!r}. Use e.g. '10MB'.")
    unit = (match.group("unit") or "B").upper()
    return int(match.group("count")) * _MULTIPLIERS[unit]


class ContextFilter(logging.Filter):
    """Stamp the current evidence/rule/stage/worker ids onto each record.

    The snapshot is taken when the record is emitted, on the worker task
    that produced it.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "context"):
            record.context = get_context().as_dict()  # type: ignore[attr-defined]
        return True


def create_rotating_handler(
    log_file: str,
    rotation: str = "10MB",
    retention: int = 30,
    level: int = logging.NOTSET,
) -> RotatingFileHandler:
    """Open a size-rotated UTF-8 log file, creating its directory.

    Args:
        log_file: Target path; ``~`` is expanded.
        rotation: Size at which the file rolls over (see parse_size).
        retention: How many rolled-over files to keep.
        level: Minimum level this handler emits.
    """
    target = Path(log_file).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)

    handler = RotatingFileHandler(
        target,
        maxBytes=parse_size(rotation),
        backupCount=retention,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.addFilter(ContextFilter())
    return handler
