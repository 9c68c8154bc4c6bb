# src/evidence/staleness.py — v1
"""Per-tier staleness policy for evidence re-verification.

Age is measured from the last successful verification (or the fetch when
never verified). With threshold T for the source's authority tier:

    age <= T/2   FRESH
    age <= T     AGING
    age <= 2T    STALE
    otherwise    EXPIRED

A change signal that disagrees with the stored etag/last-modified makes the
evidence STALE immediately, whatever its age. A STALE or EXPIRED status
recorded by an earlier check sticks until a successful re-verification
resets it to FRESH. Verification failures report UNAVAILABLE until
max_failures consecutive failures, then EXPIRED.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from regtruth.config.settings import Settings
from regtruth.core.models import ChangeSignal, Evidence, StalenessStatus, utcnow

DEFAULT_THRESHOLD_DAYS: dict[str, int] = {
    "LAW": 30,
    "REGULATION": 21,
    "GUIDANCE": 14,
    "PRACTICE": 7,
}

_NEEDS_REVERIFY: frozenset[str] = frozenset({"STALE", "EXPIRED", "UNAVAILABLE"})

_SEVERITY: dict[str, int] = {"FRESH": 0, "AGING": 1, "STALE": 2, "UNAVAILABLE": 3, "EXPIRED": 4}


@dataclass(frozen=True)
class StalenessPolicy:
    """Thresholds in days keyed by authority tier."""

    thresholds_days: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_THRESHOLD_DAYS))
    max_failures: int = 3

    @classmethod
    def from_settings(cls, settings: Settings) -> StalenessPolicy:
        return cls(
            thresholds_days=settings.staleness_days,
            max_failures=settings.staleness_max_failures,
        )

    def threshold_for(self, tier: str) -> int:
        """Days before evidence of this tier must be re-verified."""
        return self.thresholds_days.get(tier, min(self.thresholds_days.values()))


@dataclass
class StalenessResult:
    """Outcome of one staleness evaluation."""

    status: StalenessStatus
    age_days: float
    threshold_days: int
    content_changed: bool = False
    reason: str = ""

    @property
    def is_stale(self) -> bool:
        return self.status in _NEEDS_REVERIFY


def has_content_changed(evidence: Evidence, signal: ChangeSignal | None) -> bool:
    """True if the external change signal disagrees with what was stored."""
    if signal is None:
        return False
    if signal.etag and evidence.etag and signal.etag != evidence.etag:
        return True
    if (
        signal.last_modified is not None
        and evidence.last_modified is not None
        and signal.last_modified > evidence.last_modified
    ):
        return True
    return False


def compute_staleness(
    evidence: Evidence,
    policy: StalenessPolicy,
    signal: ChangeSignal | None = None,
    now: datetime | None = None,
) -> StalenessResult:
    """Evaluate freshness of one evidence record.

    Args:
        evidence: Record to evaluate.
        policy: Tier thresholds.
        signal: Latest externally observed change signal, if any.
        now: Reference time (defaults to current UTC time).

    Returns:
        StalenessResult with status and the reason for it.
    """
    now = now or utcnow()
    threshold = policy.threshold_for(evidence.authority_tier)
    reference = evidence.last_verified_at or evidence.fetched_at
    age_days = max((now - reference) / timedelta(days=1), 0.0)

    if evidence.consecutive_failures > 0:
        if evidence.consecutive_failures >= policy.max_failures:
            return StalenessResult(
                "EXPIRED", age_days, threshold,
                reason=f"{evidence.consecutive_failures} consecutive verification failures",
            )
        return StalenessResult(
            "UNAVAILABLE", age_days, threshold,
            reason=f"last verification failed ({evidence.consecutive_failures}x)",
        )

    if has_content_changed(evidence, signal):
        return StalenessResult(
            "STALE", age_days, threshold, content_changed=True,
            reason="source changed since last verification",
        )

    if age_days <= threshold * 0.5:
        status: StalenessStatus = "FRESH"
    elif age_days <= threshold:
        status = "AGING"
    elif age_days <= threshold * 2:
        status = "STALE"
    else:
        status = "EXPIRED"

    # A recorded verdict holds until a successful re-verification resets it.
    recorded = evidence.staleness_status
    if recorded in _NEEDS_REVERIFY and _SEVERITY[recorded] > _SEVERITY[status]:
        return StalenessResult(
            recorded, age_days, threshold,
            reason=f"recorded as {recorded} at last verification",
        )
    return StalenessResult(
        status, age_days, threshold,
        reason=f"age {age_days:.1f}d vs {threshold}d threshold",
    )
