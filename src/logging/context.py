# src/logging/context.py — v1
"""Contextual logging support: attach evidence, rule, stage and worker ids.

Workers set the context per claimed work item; asyncio tasks copy the
context at creation, so concurrent workers never see each other's ids.
"""

from __future__ import annotations

import contextvars
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

_evidence_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "evidence_id", default=None
)
_rule_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "rule_id", default=None
)
_stage: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "stage", default=None
)
_worker: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "worker", default=None
)

_VARS = {
    "evidence_id": _evidence_id,
    "rule_id": _rule_id,
    "stage": _stage,
    "worker": _worker,
}


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    evidence_id: str | None = None
    rule_id: str | None = None
    stage: str | None = None
    worker: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        evidence_id=_evidence_id.get(),
        rule_id=_rule_id.get(),
        stage=_stage.get(),
        worker=_worker.get(),
    )


def set_worker_context(stage: str, worker: str) -> None:
    """Set stage/worker identity (called once when a worker task starts)."""
    _stage.set(stage)
    _worker.set(worker)


@contextmanager
def log_context(**values: str | None) -> Iterator[LogContext]:
    """Temporarily bind context ids for the duration of a block.

    Example:
        with log_context(rule_id=rule.id):
            ...
    """
    unknown = set(values) - set(_VARS)
    if unknown:
        raise ValueError(f"Unknown log context keys: {sorted(unknown)}")
    tokens = [(_VARS[k], _VARS[k].set(v)) for k, v in values.items()]
    try:
        yield get_context()
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def clear_context() -> None:
    """Reset all context variables."""
    for var in _VARS.values():
        var.set(None)
