# src/arbiter/arbiter.py — v1
"""Conflict arbiter: detect, score, resolve or escalate.

Resolution is serialized per conflict id and append-only: every decision
(automatic or human) is a new Resolution that supersedes the previous
one. The arbiter never picks a side it cannot justify by authority. Close
calls and clashes between high-authority sources are escalated to the
review queue, and so are low-confidence items; the conflict stays
blocking until a human decides.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime

from regtruth.arbiter.authority import AuthorityScorer, AuthorityVerdict
from regtruth.arbiter.conflict_detector import ConflictCandidate, ConflictDetector
from regtruth.arbiter.review_queue import ReviewQueue
from regtruth.core.errors import ConflictUnresolved, NotFoundError
from regtruth.core.models import Conflict, Resolution, ResolutionOutcome, Rule, SourcePointer
from regtruth.pipeline.locks import KeyedLock
from regtruth.rules.lifecycle import RuleLifecycle
from regtruth.storage.base_store import BaseStore
from regtruth.tracking.audit_log import AuditLog

logger = logging.getLogger(__name__)

BLOCKING_STATUSES = ("OPEN", "ESCALATED")


class ConflictArbiter:
    def __init__(
        self,
        store: BaseStore,
        scorer: AuthorityScorer | None = None,
        detector: ConflictDetector | None = None,
        reviews: ReviewQueue | None = None,
        lifecycle: RuleLifecycle | None = None,
        audit: AuditLog | None = None,
    ) -> None:
        self._store = store
        self._scorer = scorer or AuthorityScorer()
        self._detector = detector or ConflictDetector()
        self._audit = audit or AuditLog(store)
        self._reviews = reviews or ReviewQueue(store, audit=self._audit)
        self._lifecycle = lifecycle or RuleLifecycle(store, reviews=self._reviews, audit=self._audit)
        self._locks = KeyedLock("conflict")

    # === Detection ===

    async def detect_conflicts(self, items: list[SourcePointer | Rule]) -> list[Conflict]:
        """Find and persist pairwise conflicts. Returns the stored conflicts."""
        candidates = [
            ConflictCandidate.from_pointer(i) if isinstance(i, SourcePointer)
            else ConflictCandidate.from_rule(i)
            for i in items
        ]
        stored: list[Conflict] = []
        for conflict in self._detector.detect(candidates):
            record, created = await self._store.add_conflict_if_absent(conflict)
            if created:
                logger.info(
                    "Conflict %s on %s: %r vs %r", record.id, record.topic_key,
                    record.value_a, record.value_b,
                    extra={"data": {"conflict_id": record.id, "items": [record.item_a_id, record.item_b_id]}},
                )
                await self._audit.record(
                    "CONFLICT_DETECTED", "conflict", record.id,
                    topic_key=record.topic_key, item_a=record.item_a_id, item_b=record.item_b_id,
                )
            stored.append(record)
        return stored

    # === Resolution ===

    async def resolve(self, conflict: Conflict | str) -> Resolution:
        """Score both sides and record the outcome.

        Returns:
            The new Resolution. NEEDS_HUMAN_REVIEW leaves the conflict
            ESCALATED and files a review request.
        """
        conflict_id = conflict if isinstance(conflict, str) else conflict.id
        async with self._locks.hold(conflict_id):
            current = await self._require(conflict_id)
            tier_a, score_a, confidence_a = await self._score_item(current.item_kind, current.item_a_id)
            tier_b, score_b, confidence_b = await self._score_item(current.item_kind, current.item_b_id)
            verdict = self._scorer.decide(
                tier_a, score_a, tier_b, score_b, confidence_a=confidence_a, confidence_b=confidence_b
            )
            return await self._record(current, verdict, decided_by="arbiter")

    async def record_human_decision(
        self, conflict_id: str, winner_id: str, reviewer: str, note: str | None = None
    ) -> Resolution:
        """Append a reviewer's decision and apply it like an automatic one."""
        async with self._locks.hold(conflict_id):
            current = await self._require(conflict_id)
            if winner_id == current.item_a_id:
                outcome: ResolutionOutcome = "SIDE_A_PREVAILS"
            elif winner_id == current.item_b_id:
                outcome = "SIDE_B_PREVAILS"
            else:
                raise ValueError(f"{winner_id!r} is not a side of conflict {conflict_id}")
            verdict = AuthorityVerdict(
                outcome,
                current.authority_a or 0.0,
                current.authority_b or 0.0,
                f"human decision by {reviewer}" + (f": {note}" if note else ""),
            )
            resolution = await self._record(current, verdict, decided_by=reviewer)
        await self._reviews.complete_for("CONFLICT_ESCALATED", conflict_id, note)
        return resolution

    async def blocking_conflicts(self, item_ids: list[str]) -> list[Conflict]:
        """OPEN or ESCALATED conflicts touching any of the given items."""
        found: dict[str, Conflict] = {}
        for item_id in item_ids:
            for c in await self._store.list_conflicts(item_id=item_id):
                if c.status in BLOCKING_STATUSES:
                    found[c.id] = c
        return [found[k] for k in sorted(found)]

    # --- Internals ---

    async def _record(self, conflict: Conflict, verdict: AuthorityVerdict, decided_by: str) -> Resolution:
        history = await self._store.list_resolutions(conflict.id)
        winner_id = loser_id = None
        if verdict.outcome == "SIDE_A_PREVAILS":
            winner_id, loser_id = conflict.item_a_id, conflict.item_b_id
        elif verdict.outcome == "SIDE_B_PREVAILS":
            winner_id, loser_id = conflict.item_b_id, conflict.item_a_id

        resolution = Resolution(
            id=f"res_{uuid.uuid4().hex[:16]}",
            conflict_id=conflict.id,
            outcome=verdict.outcome,
            winner_id=winner_id,
            loser_id=loser_id,
            authority_a=verdict.score_a,
            authority_b=verdict.score_b,
            rationale=verdict.rationale,
            decided_by=decided_by,
            supersedes=history[-1].id if history else None,
        )
        await self._store.append_resolution(resolution)
        escalated = verdict.outcome == "NEEDS_HUMAN_REVIEW"
        await self._store.update_conflict(
            conflict.model_copy(
                update={
                    "status": "ESCALATED" if escalated else "RESOLVED",
                    "resolution_id": resolution.id,
                    "authority_a": verdict.score_a,
                    "authority_b": verdict.score_b,
                }
            )
        )
        await self._audit.record(
            "CONFLICT_RESOLVED", "conflict", conflict.id,
            outcome=verdict.outcome, winner_id=winner_id, decided_by=decided_by,
            resolution_id=resolution.id, supersedes=resolution.supersedes,
        )

        if escalated:
            unresolved = ConflictUnresolved(conflict.id, verdict.rationale)
            logger.warning("%s", unresolved, extra={"data": {"conflict_id": conflict.id}})
            await self._reviews.file("conflict", conflict.id, "CONFLICT_ESCALATED", detail=verdict.rationale)
        else:
            logger.info("Conflict %s resolved: %s", conflict.id, verdict.rationale)
            await self._apply(conflict, winner_id, loser_id)  # type: ignore[arg-type]
        return resolution

    async def _apply(self, conflict: Conflict, winner_id: str, loser_id: str) -> None:
        if conflict.item_kind == "pointer":
            await self._store.annotate_pointer(loser_id, "REJECTED_LOWER_AUTHORITY", conflict.id)
            winner = await self._store.get_pointer(winner_id)
            # A superseding decision may reinstate the previous loser
            if winner is not None and winner.conflict_id == conflict.id:
                await self._store.annotate_pointer(winner_id, None, None)
            return

        loser = await self._store.get_rule(loser_id)
        if loser is None:
            raise NotFoundError("rule", loser_id)
        reason = f"lost conflict {conflict.id} to {winner_id}"
        if loser.status == "PUBLISHED":
            await self._lifecycle.revoke(loser_id, reason)
        elif loser.status not in ("REJECTED", "REVOKED"):
            await self._lifecycle.reject(loser_id, reason)

    async def _score_item(self, kind: str, item_id: str) -> tuple[str | None, float, float]:
        """Authority tier, authority score and extraction confidence of one side."""
        if kind == "pointer":
            pointer = await self._store.get_pointer(item_id)
            if pointer is None:
                raise NotFoundError("pointer", item_id)
            evidence = await self._store.get_evidence(pointer.evidence_id)
            if evidence is None:
                raise NotFoundError("evidence", pointer.evidence_id)
            ref: date | datetime = pointer.effective_from or evidence.fetched_at
            return evidence.authority_tier, self._scorer.score(evidence.authority_tier, ref), pointer.confidence

        rule = await self._store.get_rule(item_id)
        if rule is None:
            raise NotFoundError("rule", item_id)
        ref = rule.effective_from or rule.created_at
        return rule.authority_tier, self._scorer.score(rule.authority_tier, ref), rule.confidence

    async def _require(self, conflict_id: str) -> Conflict:
        conflict = await self._store.get_conflict(conflict_id)
        if conflict is None:
            raise NotFoundError("conflict", conflict_id)
        return conflict
