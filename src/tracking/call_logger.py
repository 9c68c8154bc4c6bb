# src/tracking/call_logger.py — v1
"""Extraction call logging — one record per call to the extraction service.

Kept in memory for the lifetime of a run; the CLI prints the summary.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from regtruth.core.models import utcnow

logger = logging.getLogger(__name__)

CallStatus = Literal["success", "retry", "failed", "timeout"]


@dataclass
class ExtractionCallRecord:
    """Single extraction service call."""

    call_id: str
    timestamp: datetime
    evidence_id: str
    provider: str
    attempt: int
    status: CallStatus
    latency_ms: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    candidates: int = 0
    error: str | None = None


@dataclass
class CallLogger:
    """Accumulates extraction call records during a run."""

    _records: list[ExtractionCallRecord] = field(default_factory=list)

    def record(
        self,
        evidence_id: str,
        provider: str,
        attempt: int,
        status: CallStatus,
        latency_ms: int = 0,
        input_tokens: int = 0,
        output_tokens: int = 0,
        candidates: int = 0,
        error: str | None = None,
    ) -> ExtractionCallRecord:
        """Record an extraction call.

        Args:
            evidence_id: Evidence the call extracted from.
            provider: Extraction client provider name.
            attempt: 1-based attempt number.
            status: Outcome of the call.
            latency_ms: Wall time of the call.
            input_tokens: Tokens sent, when the provider reports them.
            output_tokens: Tokens received, when the provider reports them.
            candidates: Candidate assertions returned.
            error: Error text for non-success outcomes.

        Returns:
            The recorded ExtractionCallRecord.
        """
        rec = ExtractionCallRecord(
            call_id=str(uuid.uuid4()),
            timestamp=utcnow(),
            evidence_id=evidence_id,
            provider=provider,
            attempt=attempt,
            status=status,
            latency_ms=latency_ms,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            candidates=candidates,
            error=error,
        )
        self._records.append(rec)
        return rec

    @property
    def records(self) -> list[ExtractionCallRecord]:
        """All recorded calls."""
        return list(self._records)

    @property
    def total_calls(self) -> int:
        return len(self._records)

    @property
    def total_tokens(self) -> int:
        return sum(r.input_tokens + r.output_tokens for r in self._records)

    def summary(self) -> dict[str, int]:
        """Call counts per status."""
        out: dict[str, int] = {}
        for r in self._records:
            out[r.status] = out.get(r.status, 0) + 1
        return out
