# src/arbiter/conflict_detector.py — v1
"""Detect pairwise contradictions between pointers or rule versions.

Two items conflict when they share a topic and value type, their validity
windows overlap (open ends count as unbounded) and their values differ
beyond the tolerance for that value type. Numeric types compare parsed
numbers; everything else compares normalised text. Conflict ids are
derived from the unordered pair, so detection is idempotent.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation

from regtruth.core.models import NUMERIC_VALUE_TYPES, Conflict, Rule, SourcePointer

logger = logging.getLogger(__name__)

_NUMBER = re.compile(r"-?\d[\d\s.,']*")


@dataclass(frozen=True)
class ConflictCandidate:
    """Uniform view over a pointer or a rule for pairwise comparison."""

    item_id: str
    item_kind: str
    topic_key: str
    value_type: str
    value: str | None
    effective_from: date | None
    effective_to: date | None

    @classmethod
    def from_pointer(cls, pointer: SourcePointer) -> ConflictCandidate:
        return cls(
            pointer.id, "pointer", pointer.topic_key, pointer.value_type, pointer.value,
            pointer.effective_from, pointer.effective_to,
        )

    @classmethod
    def from_rule(cls, rule: Rule) -> ConflictCandidate:
        return cls(
            rule.id, "rule", rule.topic_key, rule.value_type, rule.value,
            rule.effective_from, rule.effective_to,
        )


def windows_overlap(
    s1: date | None, e1: date | None, s2: date | None, e2: date | None
) -> bool:
    """Inclusive overlap; None is an open bound."""
    start_ok = s1 is None or e2 is None or s1 <= e2
    end_ok = s2 is None or e1 is None or s2 <= e1
    return start_ok and end_ok


def parse_number(value: str | None) -> Decimal | None:
    """Read the first number in a value like '25 %', '85.000 EUR' or '0,25'."""
    if value is None:
        return None
    match = _NUMBER.search(value)
    if not match:
        return None
    raw = re.sub(r"[\s']", "", match.group(0)).rstrip(".,")
    if "," in raw and "." in raw:
        # The later separator is the decimal mark
        if raw.rfind(",") > raw.rfind("."):
            raw = raw.replace(".", "").replace(",", ".")
        else:
            raw = raw.replace(",", "")
    elif "," in raw:
        head, _, tail = raw.rpartition(",")
        thousands = raw.count(",") > 1 or (len(tail) == 3 and head and head != "0")
        raw = raw.replace(",", "") if thousands else raw.replace(",", ".")
    elif "." in raw:
        head, _, tail = raw.rpartition(".")
        if raw.count(".") > 1 or (len(tail) == 3 and head and head != "0"):
            raw = raw.replace(".", "")
    try:
        return Decimal(raw)
    except InvalidOperation:
        return None


def _normalize_text(value: str | None) -> str:
    return " ".join((value or "").lower().split())


def conflict_id_for(item_a: str, item_b: str) -> str:
    low, high = sorted((item_a, item_b))
    return f"cf_{hashlib.sha256(f'{low}|{high}'.encode()).hexdigest()[:16]}"


class ConflictDetector:
    """Pairwise comparison with per-value-type tolerances."""

    def __init__(self, tolerances: dict[str, float] | None = None) -> None:
        self._tolerances = {"rate": 0.0, "threshold": 0.0, **(tolerances or {})}

    def values_diverge(self, value_type: str, a: str | None, b: str | None) -> bool:
        if value_type in NUMERIC_VALUE_TYPES:
            num_a, num_b = parse_number(a), parse_number(b)
            if num_a is not None and num_b is not None:
                tolerance = Decimal(str(self._tolerances.get(value_type, 0.0)))
                return abs(num_a - num_b) > tolerance
        return _normalize_text(a) != _normalize_text(b)

    def conflicts_between(self, a: ConflictCandidate, b: ConflictCandidate) -> bool:
        if a.item_id == b.item_id or a.topic_key != b.topic_key:
            return False
        if a.value_type != b.value_type:
            return False
        if not windows_overlap(a.effective_from, a.effective_to, b.effective_from, b.effective_to):
            return False
        return self.values_diverge(a.value_type, a.value, b.value)

    def detect(self, candidates: list[ConflictCandidate]) -> list[Conflict]:
        """All diverging pairs, one Conflict per unordered pair, sorted by id."""
        found: dict[str, Conflict] = {}
        ordered = sorted(candidates, key=lambda c: c.item_id)
        for i, a in enumerate(ordered):
            for b in ordered[i + 1:]:
                if not self.conflicts_between(a, b):
                    continue
                cid = conflict_id_for(a.item_id, b.item_id)
                found.setdefault(
                    cid,
                    Conflict(
                        id=cid,
                        topic_key=a.topic_key,
                        item_kind=a.item_kind,  # type: ignore[arg-type]
                        item_a_id=a.item_id,
                        item_b_id=b.item_id,
                        value_a=a.value,
                        value_b=b.value,
                    ),
                )
        if found:
            logger.info(
                "Detected %d conflicts among %d candidates", len(found), len(candidates)
            )
        return [found[k] for k in sorted(found)]
