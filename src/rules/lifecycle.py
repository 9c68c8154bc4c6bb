# src/rules/lifecycle.py — v1
"""Rule status transitions and the publication gate.

    DRAFT -> REVIEW -> ARBITRATED -> PUBLISHED -> REVOKED
      \\________\\___________\\-> REJECTED

Publication re-verifies every supporting pointer against the immutable
evidence text; a rule whose provenance no longer holds is rejected, never
published. Published rules are handed to the graph status machine.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from regtruth.arbiter.review_queue import ReviewQueue
from regtruth.composer.rule_composer import DEFAULT_HIGH_RISK_VALUE_TYPES, is_eligible
from regtruth.core.errors import InvalidTransition, NotFoundError, ProvenanceMismatch
from regtruth.core.models import Rule, RuleStatus, utcnow
from regtruth.extraction.offsets import holds_invariant, utf16_slice
from regtruth.pipeline.locks import KeyedLock
from regtruth.storage.base_store import BaseStore
from regtruth.tracking.audit_log import AuditLog

if TYPE_CHECKING:
    from regtruth.graph.status_machine import GraphStatusMachine

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "DRAFT": frozenset({"REVIEW", "REJECTED"}),
    "REVIEW": frozenset({"ARBITRATED", "REJECTED"}),
    "ARBITRATED": frozenset({"PUBLISHED", "REJECTED"}),
    "PUBLISHED": frozenset({"REVOKED"}),
    "REJECTED": frozenset(),
    "REVOKED": frozenset(),
}


class RuleLifecycle:
    """Every rule status change goes through here."""

    def __init__(
        self,
        store: BaseStore,
        graph: GraphStatusMachine | None = None,
        reviews: ReviewQueue | None = None,
        audit: AuditLog | None = None,
        rule_locks: KeyedLock | None = None,
        high_risk_value_types: list[str] | None = None,
    ) -> None:
        self._store = store
        self._graph = graph
        self._audit = audit or AuditLog(store)
        self._reviews = reviews or ReviewQueue(store, audit=self._audit)
        self._locks = rule_locks or KeyedLock("rule")
        self._high_risk = (
            frozenset(high_risk_value_types)
            if high_risk_value_types is not None
            else DEFAULT_HIGH_RISK_VALUE_TYPES
        )

    # --- Drafts ---

    async def next_version(self, topic_key: str) -> int:
        rules = await self._store.list_rules(topic_key)
        return max((r.version for r in rules), default=0) + 1

    async def save_draft(self, rule: Rule) -> Rule:
        if rule.status != "DRAFT":
            raise InvalidTransition(rule.id, rule.status, "DRAFT")
        await self._store.put_rule(rule)
        await self._audit.record(
            "RULE_DRAFTED", "rule", rule.id,
            topic_key=rule.topic_key, version=rule.version,
            complete=rule.composition_complete, pointer_ids=rule.pointer_ids,
        )
        return rule

    async def import_legacy(self, rule: Rule) -> Rule:
        """Store a rule created outside the pipeline: PUBLISHED, no graph status."""
        legacy = rule.model_copy(
            update={"status": "PUBLISHED", "graph_status": None, "published_at": utcnow()}
        )
        await self._store.put_rule(legacy)
        await self._audit.record("RULE_IMPORTED_LEGACY", "rule", legacy.id, topic_key=legacy.topic_key)
        logger.warning("Imported legacy rule %s without graph status", legacy.id)
        return legacy

    # --- Transitions ---

    async def transition(self, rule_id: str, target: RuleStatus, reason: str | None = None) -> Rule:
        """Move a rule to target if the transition table allows it.

        Raises:
            InvalidTransition: If the move is not allowed.
            NotFoundError: If the rule does not exist.
        """
        async with self._locks.hold(rule_id):
            return await self._transition_locked(rule_id, target, reason)

    async def _transition_locked(
        self, rule_id: str, target: RuleStatus, reason: str | None = None, **updates: object
    ) -> Rule:
        rule = await self._require(rule_id)
        if target not in ALLOWED_TRANSITIONS[rule.status]:
            raise InvalidTransition(rule_id, rule.status, target)
        if target == "REVIEW" and not rule.composition_complete:
            raise InvalidTransition(rule_id, f"{rule.status} (incomplete)", target)

        changes: dict[str, object] = {"status": target, **updates}
        if target == "REVOKED":
            changes["revoked_reason"] = reason
        updated = rule.model_copy(update=changes)
        await self._store.put_rule(updated)
        await self._audit.record(
            "RULE_STATUS_CHANGED", "rule", rule_id,
            previous=rule.status, current=target, reason=reason,
        )
        logger.info("Rule %s: %s -> %s%s", rule_id, rule.status, target, f" ({reason})" if reason else "")
        return updated

    async def submit_for_review(self, rule_id: str) -> Rule:
        return await self.transition(rule_id, "REVIEW")

    async def mark_arbitrated(self, rule_id: str) -> Rule:
        return await self.transition(rule_id, "ARBITRATED")

    async def reject(self, rule_id: str, reason: str) -> Rule:
        return await self.transition(rule_id, "REJECTED", reason)

    async def revoke(self, rule_id: str, reason: str) -> Rule:
        """Withdraw a published rule and refresh the graph around it."""
        revoked = await self.transition(rule_id, "REVOKED", reason)
        if self._graph is not None:
            await self._graph.invalidate(revoked, f"revoked: {reason}")
        return revoked

    async def publish(self, rule_id: str) -> Rule:
        """Publication gate: re-verify provenance, then publish with graph PENDING.

        Raises:
            ProvenanceMismatch: A supporting pointer no longer matches its
                evidence; the rule is REJECTED and a review is filed.
            InvalidTransition: The rule is not ARBITRATED.
        """
        async with self._locks.hold(rule_id):
            rule = await self._require(rule_id)
            if "PUBLISHED" not in ALLOWED_TRANSITIONS[rule.status]:
                raise InvalidTransition(rule_id, rule.status, "PUBLISHED")
            try:
                await self.verify_provenance(rule)
            except ProvenanceMismatch as e:
                await self._transition_locked(rule_id, "REJECTED", str(e))
                await self._reviews.file("rule", rule_id, "PROVENANCE_FAILURE", detail=str(e))
                raise
            published = await self._transition_locked(
                rule_id, "PUBLISHED", published_at=utcnow(), graph_status="PENDING", graph_error=None,
            )
        if self._graph is not None:
            await self._graph.on_publish(published)
        return published

    async def verify_provenance(self, rule: Rule) -> None:
        """Every pointer must be eligible and its quote must be its evidence slice.

        Raises:
            ProvenanceMismatch: On the first pointer that fails.
        """
        if not rule.pointer_ids:
            raise ProvenanceMismatch("-", 0, 0, f"rule {rule.id} has no pointers", "")
        for pointer_id in rule.pointer_ids:
            pointer = await self._store.get_pointer(pointer_id)
            if pointer is None:
                raise ProvenanceMismatch("-", 0, 0, f"missing pointer {pointer_id}", "")
            evidence = await self._store.get_evidence(pointer.evidence_id)
            if evidence is None:
                raise ProvenanceMismatch(
                    pointer.evidence_id, pointer.start_offset, pointer.end_offset,
                    pointer.exact_quote, "<evidence missing>",
                )
            if not is_eligible(pointer, self._high_risk) or not holds_invariant(
                evidence.raw_content, pointer.start_offset, pointer.end_offset, pointer.exact_quote
            ):
                actual = utf16_slice(evidence.raw_content, pointer.start_offset, pointer.end_offset)
                raise ProvenanceMismatch(
                    evidence.id, pointer.start_offset, pointer.end_offset,
                    pointer.exact_quote, actual or "",
                )

    async def _require(self, rule_id: str) -> Rule:
        rule = await self._store.get_rule(rule_id)
        if rule is None:
            raise NotFoundError("rule", rule_id)
        return rule
