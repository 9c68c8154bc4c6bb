# src/arbiter/authority.py — v1
"""Authority scoring and the arbitration decision rule.

score = tier score + recency_weight * 2^(-age_days / half_life_days)

The recency term is bounded by recency_weight, so with the default weight
(0.25) it can separate two items of the same tier but never lift one above
a higher tier. A winner needs a lead greater than the margin. Close calls
and clashes between two high-authority sources go to a human, as does any
side whose extraction confidence is below min_confidence.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime

from regtruth.config.authority import DEFAULT_AUTHORITY_MAPPING, AuthorityMapping
from regtruth.core.models import ResolutionOutcome, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthorityVerdict:
    """Outcome of comparing two scored sides."""

    outcome: ResolutionOutcome
    score_a: float
    score_b: float
    rationale: str


@dataclass
class AuthorityScorer:
    """Scores items and applies the margin / high-authority escalation rule."""

    mapping: AuthorityMapping = field(default_factory=lambda: DEFAULT_AUTHORITY_MAPPING)
    recency_weight: float = 0.25
    half_life_days: int = 365
    margin: float = 0.5
    high_authority_tiers: frozenset[str] = frozenset({"LAW"})
    min_confidence: float = 0.85

    @classmethod
    def from_settings(cls, settings, mapping: AuthorityMapping | None = None) -> AuthorityScorer:
        return cls(
            mapping=mapping or DEFAULT_AUTHORITY_MAPPING,
            recency_weight=settings.recency_weight,
            half_life_days=settings.recency_half_life_days,
            margin=settings.authority_margin,
            high_authority_tiers=frozenset(settings.high_authority_tiers_list),
            min_confidence=settings.escalation_min_confidence,
        )

    def score(
        self,
        tier: str | None,
        as_of: date | datetime | None = None,
        now: datetime | None = None,
    ) -> float:
        """Tier score plus a recency bonus that halves every half_life_days."""
        base = self.mapping.score(tier)
        if as_of is None or self.recency_weight == 0:
            return base
        now = now or utcnow()
        ref = as_of.date() if isinstance(as_of, datetime) else as_of
        age_days = max((now.date() - ref).days, 0)
        return base + self.recency_weight * 2 ** (-age_days / max(self.half_life_days, 1))

    def decide(
        self,
        tier_a: str | None,
        score_a: float,
        tier_b: str | None,
        score_b: float,
        confidence_a: float | None = None,
        confidence_b: float | None = None,
    ) -> AuthorityVerdict:
        """Pick a side only when authority alone justifies it.

        Confidences are those of the competing items; None skips the check.
        """
        if tier_a in self.high_authority_tiers and tier_b in self.high_authority_tiers:
            return AuthorityVerdict(
                "NEEDS_HUMAN_REVIEW", score_a, score_b,
                f"both sides are high-authority ({tier_a} vs {tier_b})",
            )
        low = [
            f"{side} {c:.2f}"
            for side, c in (("A", confidence_a), ("B", confidence_b))
            if c is not None and c < self.min_confidence
        ]
        if low:
            return AuthorityVerdict(
                "NEEDS_HUMAN_REVIEW", score_a, score_b,
                f"confidence below {self.min_confidence} ({', '.join(low)})",
            )
        gap = abs(score_a - score_b)
        if gap <= self.margin:
            return AuthorityVerdict(
                "NEEDS_HUMAN_REVIEW", score_a, score_b,
                f"authority {score_a:.3f} vs {score_b:.3f} within margin {self.margin}",
            )
        if score_a > score_b:
            return AuthorityVerdict(
                "SIDE_A_PREVAILS", score_a, score_b,
                f"{tier_a} ({score_a:.3f}) outranks {tier_b} ({score_b:.3f})",
            )
        return AuthorityVerdict(
            "SIDE_B_PREVAILS", score_a, score_b,
            f"{tier_b} ({score_b:.3f}) outranks {tier_a} ({score_a:.3f})",
        )
