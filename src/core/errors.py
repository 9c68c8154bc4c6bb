# src/core/errors.py — v1
"""Error taxonomy shared by every stage of the evidence-to-rule pipeline.

Each stage decides locally whether an error is retried, parked or surfaced;
the types here only carry enough context for that decision and for logging.
"""

from __future__ import annotations


class RegTruthError(Exception):
    """Base class for all domain errors."""


class ImmutabilityViolation(RegTruthError):
    """Attempted mutation of a frozen evidence field. Always fatal."""

    def __init__(self, evidence_id: str, fields: list[str]) -> None:
        self.evidence_id = evidence_id
        self.fields = sorted(fields)
        super().__init__(
            f"Evidence {evidence_id} is immutable; refused update of "
            f"{', '.join(self.fields)}"
        )


class ProvenanceMismatch(RegTruthError):
    """Quote/offset verification failed for a pointer."""

    def __init__(
        self,
        evidence_id: str,
        start: int,
        end: int,
        claimed: str,
        actual: str,
    ) -> None:
        self.evidence_id = evidence_id
        self.start = start
        self.end = end
        self.claimed = claimed
        self.actual = actual
        super().__init__(
            f"Quote mismatch in {evidence_id}[{start}:{end}]: "
            f"claimed {claimed[:60]!r}, found {actual[:60]!r}"
        )


class ExtractionFailure(RegTruthError):
    """Extraction produced nothing usable after the bounded retry budget."""

    def __init__(self, evidence_id: str, attempts: int, reason: str) -> None:
        self.evidence_id = evidence_id
        self.attempts = attempts
        self.reason = reason
        super().__init__(
            f"Extraction for {evidence_id} failed after {attempts} attempts: {reason}"
        )


class ConflictUnresolved(RegTruthError):
    """Conflict could not be justified by authority alone and was escalated."""

    def __init__(self, conflict_id: str, reason: str) -> None:
        self.conflict_id = conflict_id
        self.reason = reason
        super().__init__(f"Conflict {conflict_id} escalated: {reason}")


class GraphCycleDetected(RegTruthError):
    """Adding a rule's edges would make the dependency graph cyclic."""

    def __init__(self, rule_id: str, cycle: list[str]) -> None:
        self.rule_id = rule_id
        self.cycle = cycle
        super().__init__(
            f"Dependency cycle while building edges for {rule_id}: "
            + " -> ".join(cycle)
        )


class MissingDependency(RegTruthError):
    """A referenced topic has no published rule to depend on."""

    def __init__(self, rule_id: str, topic_key: str) -> None:
        self.rule_id = rule_id
        self.topic_key = topic_key
        super().__init__(
            f"Rule {rule_id} depends on topic {topic_key!r} which has no published rule"
        )


class DependencyNotCurrent(RegTruthError):
    """A rule depends on rules that are STALE in the graph."""

    def __init__(self, rule_id: str, dependency_ids: list[str]) -> None:
        self.rule_id = rule_id
        self.dependency_ids = sorted(dependency_ids)
        super().__init__(
            f"Rule {rule_id} depends on stale rules: {', '.join(self.dependency_ids)}"
        )


class ExternalServiceTimeout(RegTruthError):
    """An external call exceeded its request-level timeout."""

    def __init__(self, service: str, timeout_s: float) -> None:
        self.service = service
        self.timeout_s = timeout_s
        super().__init__(f"{service} did not respond within {timeout_s:.1f}s")


class RetryExhausted(RegTruthError):
    """All retries exhausted for an external call."""

    def __init__(self, operation: str, attempts: int, last_error: Exception) -> None:
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"'{operation}' failed after {attempts} attempts: {last_error}"
        )


class InvalidTransition(RegTruthError):
    """Rule lifecycle transition not allowed from the current status."""

    def __init__(self, rule_id: str, current: str, target: str) -> None:
        self.rule_id = rule_id
        self.current = current
        self.target = target
        super().__init__(f"Rule {rule_id}: cannot move from {current} to {target}")


class PredicateValidationError(RegTruthError):
    """An applies-when predicate failed write-time validation."""


class NotFoundError(RegTruthError):
    """Referenced entity does not exist in the store."""

    def __init__(self, kind: str, entity_id: str) -> None:
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} {entity_id!r} not found")
