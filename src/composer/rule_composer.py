# src/composer/rule_composer.py — v1
"""Compose draft rules from verified source pointers.

Composition is deterministic: the same pointers always give the same
rule. Only pointers that passed verification (and the risk gate for
high-risk value types) and were not rejected by the arbiter are used.
A rule that cannot cover every required value type of its topic is still
returned, as an incomplete DRAFT that never reaches arbitration.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from regtruth.composer.dsl import DEFAULT_MAX_PATTERN_LENGTH, parse_predicate
from regtruth.composer.topics import TopicRegistry, TopicSchema
from regtruth.core.models import AuthorityTier, Rule, SourcePointer

logger = logging.getLogger(__name__)

DEFAULT_HIGH_RISK_VALUE_TYPES: frozenset[str] = frozenset(
    {"threshold", "rate", "deadline", "prohibition"}
)

Window = tuple[date | None, date | None]


def rule_id_for(topic_key: str, version: int) -> str:
    slug = re.sub(r"[^a-z0-9]+", "_", topic_key.lower()).strip("_")
    return f"rule_{slug}_v{version}"


def is_eligible(pointer: SourcePointer, high_risk: frozenset[str] | set[str]) -> bool:
    """Verified, not rejected, and EXACT where the value type is high-risk."""
    if pointer.conflict_status is not None:
        return False
    if pointer.value_type in high_risk:
        return pointer.match_type == "EXACT"
    return pointer.is_verified


def _parse_date_value(value: str) -> date | None:
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


@dataclass
class WindowGroup:
    """Pointers that share one validity window."""

    window: Window
    pointers: list[SourcePointer] = field(default_factory=list)

    def covered(self) -> set[str]:
        return {p.value_type for p in self.pointers}


class RuleComposer:
    """Build DRAFT rules from pointers of one topic."""

    def __init__(
        self,
        topics: TopicRegistry,
        high_risk_value_types: list[str] | None = None,
        max_pattern_length: int = DEFAULT_MAX_PATTERN_LENGTH,
    ) -> None:
        self._topics = topics
        self._high_risk = (
            frozenset(high_risk_value_types)
            if high_risk_value_types is not None
            else DEFAULT_HIGH_RISK_VALUE_TYPES
        )
        self._max_pattern_length = max_pattern_length

    @classmethod
    def from_settings(cls, topics: TopicRegistry, settings: Any) -> RuleComposer:
        return cls(
            topics,
            high_risk_value_types=settings.high_risk_value_types_list,
            max_pattern_length=settings.dsl_max_pattern_length,
        )

    def eligible(self, pointers: list[SourcePointer]) -> list[SourcePointer]:
        return [p for p in pointers if is_eligible(p, self._high_risk)]

    def compose(
        self,
        topic: TopicSchema | str,
        pointers: list[SourcePointer],
        *,
        version: int = 1,
        evidence_tiers: dict[str, AuthorityTier] | None = None,
        applies_when: dict[str, Any] | None = None,
    ) -> Rule:
        """Compose one DRAFT rule for a topic.

        Args:
            topic: Topic schema or key.
            pointers: Candidate pointers; ineligible ones are ignored.
            version: Version number to assign.
            evidence_tiers: Authority tier per evidence id, for the rule's tier.
            applies_when: Optional predicate, validated before use.

        Returns:
            Rule with status DRAFT. composition_complete is False when
            required value types are missing.

        Raises:
            PredicateValidationError: If applies_when is invalid.
        """
        schema = topic if isinstance(topic, TopicSchema) else self._topics.get(topic)
        if applies_when is not None:
            parse_predicate(applies_when, self._max_pattern_length)

        usable = [
            p for p in self.eligible(pointers)
            if p.topic_key == schema.topic_key and p.value_type in schema.required_value_types
        ]
        skipped = len(pointers) - len(usable)
        if skipped:
            logger.debug("Ignored %d pointers for %s", skipped, schema.topic_key)

        rule_id = rule_id_for(schema.topic_key, version)
        group = self._pick_group(schema, usable)
        selected = self._select(schema, group.pointers) if group else {}
        missing = [t for t in schema.required_value_types if t not in selected]

        primary = selected.get(schema.primary_value_type)
        effective_from, effective_to = group.window if group else (None, None)
        date_pointer = selected.get("date")
        if date_pointer is not None:
            effective_from = _parse_date_value(date_pointer.value) or effective_from

        chosen = sorted(selected.values(), key=lambda p: p.id)
        tiers = evidence_tiers or {}
        rule = Rule(
            id=rule_id,
            topic_key=schema.topic_key,
            version=version,
            value=primary.value if primary else None,
            value_type=schema.primary_value_type,
            pointer_ids=[p.id for p in chosen],
            effective_from=effective_from,
            effective_to=effective_to,
            applies_when=applies_when,
            confidence=min((p.confidence for p in chosen), default=0.0),
            authority_tier=tiers.get(primary.evidence_id) if primary else None,
            composition_complete=not missing,
            missing_value_types=missing,
        )
        if missing:
            logger.info(
                "Draft %s incomplete, missing %s", rule_id, missing,
                extra={"data": {"missing": missing}},
            )
        else:
            logger.info("Composed %s = %r from %d pointers", rule_id, rule.value, len(chosen))
        return rule

    # --- Helpers ---

    def _pick_group(self, schema: TopicSchema, pointers: list[SourcePointer]) -> WindowGroup | None:
        """Group by validity window and pick the best supported window.

        Pointers without a window apply to every window. Complete groups
        beat incomplete ones; among equals the latest start wins.
        """
        if not pointers:
            return None
        floating = [p for p in pointers if p.effective_from is None and p.effective_to is None]
        groups: dict[Window, WindowGroup] = {}
        for p in pointers:
            if p.effective_from is None and p.effective_to is None:
                continue
            key = (p.effective_from, p.effective_to)
            groups.setdefault(key, WindowGroup(window=key)).pointers.append(p)
        if not groups:
            return WindowGroup(window=(None, None), pointers=floating)
        for group in groups.values():
            group.pointers.extend(floating)

        required = set(schema.required_value_types)

        def rank(g: WindowGroup) -> tuple[int, int, date]:
            return (
                int(required <= g.covered()),
                len(required & g.covered()),
                g.window[0] or date.min,
            )

        return max(groups.values(), key=rank)

    @staticmethod
    def _select(schema: TopicSchema, pointers: list[SourcePointer]) -> dict[str, SourcePointer]:
        """Best pointer per required value type: EXACT first, then confidence."""
        best: dict[str, SourcePointer] = {}
        for p in sorted(pointers, key=lambda p: p.id):
            current = best.get(p.value_type)
            if current is None or _preference(p) > _preference(current):
                best[p.value_type] = p
        return {t: best[t] for t in schema.required_value_types if t in best}


def _preference(pointer: SourcePointer) -> tuple[int, float]:
    return (int(pointer.match_type == "EXACT"), pointer.confidence)
