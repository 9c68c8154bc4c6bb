# tests/unit/arbiter/test_unit_arbiter.py — v1
"""Tests for arbiter/arbiter.py and arbiter/review_queue.py over the memory store."""

from __future__ import annotations

from datetime import timedelta

import pytest

from regtruth.arbiter.arbiter import ConflictArbiter
from regtruth.arbiter.authority import AuthorityScorer
from regtruth.arbiter.review_queue import ReviewQueue, review_id_for
from regtruth.core.errors import NotFoundError
from regtruth.core.models import utcnow


@pytest.fixture
def arbiter(store) -> ConflictArbiter:
    return ConflictArbiter(store)


@pytest.fixture
def pointer_pair(store, make_evidence_fn, make_pointer_fn):
    """Factory: two rate pointers backed by evidence of the given tiers."""

    async def _pair(tier_a: str, tier_b: str):
        await store.insert_evidence_if_absent(make_evidence_fn("ev_a", authority_tier=tier_a))
        await store.insert_evidence_if_absent(make_evidence_fn("ev_b", authority_tier=tier_b))
        a = make_pointer_fn("sp_a", evidence_id="ev_a", value="25%")
        b = make_pointer_fn("sp_b", evidence_id="ev_b", value="23%")
        await store.add_pointers([a, b])
        return a, b

    return _pair


class TestDetect:
    @pytest.mark.asyncio
    async def test_detect_persists_once(self, arbiter, store, pointer_pair):
        a, b = await pointer_pair("LAW", "GUIDANCE")
        first = await arbiter.detect_conflicts([a, b])
        second = await arbiter.detect_conflicts([b, a])
        assert len(first) == 1
        assert first[0].id == second[0].id
        assert first[0].status == "OPEN"
        detected = [e for e in await store.list_audit(first[0].id) if e.event == "CONFLICT_DETECTED"]
        assert len(detected) == 1

    @pytest.mark.asyncio
    async def test_blocking_conflicts(self, arbiter, pointer_pair):
        a, b = await pointer_pair("LAW", "GUIDANCE")
        [conflict] = await arbiter.detect_conflicts([a, b])
        assert [c.id for c in await arbiter.blocking_conflicts(["sp_a"])] == [conflict.id]
        await arbiter.resolve(conflict)
        assert await arbiter.blocking_conflicts(["sp_a", "sp_b"]) == []


class TestResolve:
    @pytest.mark.asyncio
    async def test_higher_authority_wins(self, arbiter, store, pointer_pair):
        a, b = await pointer_pair("LAW", "GUIDANCE")
        [conflict] = await arbiter.detect_conflicts([a, b])
        resolution = await arbiter.resolve(conflict.id)

        assert resolution.outcome == "SIDE_A_PREVAILS"
        assert resolution.winner_id == "sp_a"
        assert resolution.loser_id == "sp_b"
        assert resolution.supersedes is None
        assert (await store.get_conflict(conflict.id)).status == "RESOLVED"
        loser = await store.get_pointer("sp_b")
        assert loser.conflict_status == "REJECTED_LOWER_AUTHORITY"
        assert loser.conflict_id == conflict.id
        assert (await store.get_pointer("sp_a")).conflict_status is None

    @pytest.mark.asyncio
    async def test_equal_authority_escalates(self, arbiter, store, pointer_pair):
        a, b = await pointer_pair("GUIDANCE", "GUIDANCE")
        [conflict] = await arbiter.detect_conflicts([a, b])
        resolution = await arbiter.resolve(conflict)

        assert resolution.outcome == "NEEDS_HUMAN_REVIEW"
        assert resolution.winner_id is None
        assert (await store.get_conflict(conflict.id)).status == "ESCALATED"
        review = await store.get_review_request(review_id_for("CONFLICT_ESCALATED", conflict.id))
        assert review.status == "PENDING"
        assert review.priority == "HIGH"
        assert (await store.get_pointer("sp_a")).conflict_status is None

    @pytest.mark.asyncio
    async def test_two_laws_escalate(self, arbiter, store, pointer_pair):
        a, b = await pointer_pair("LAW", "LAW")
        [conflict] = await arbiter.detect_conflicts([a, b])
        assert (await arbiter.resolve(conflict)).outcome == "NEEDS_HUMAN_REVIEW"

    @pytest.mark.asyncio
    async def test_unknown_conflict(self, arbiter):
        with pytest.raises(NotFoundError):
            await arbiter.resolve("cf_missing")


class TestHumanDecision:
    @pytest.mark.asyncio
    async def test_decision_supersedes_and_closes_review(self, arbiter, store, pointer_pair):
        a, b = await pointer_pair("GUIDANCE", "GUIDANCE")
        [conflict] = await arbiter.detect_conflicts([a, b])
        escalation = await arbiter.resolve(conflict)

        decision = await arbiter.record_human_decision(conflict.id, "sp_b", "alice", "per ministry letter")
        assert decision.supersedes == escalation.id
        assert decision.decided_by == "alice"
        assert decision.outcome == "SIDE_B_PREVAILS"
        assert (await store.get_conflict(conflict.id)).status == "RESOLVED"
        assert (await store.get_pointer("sp_a")).conflict_status == "REJECTED_LOWER_AUTHORITY"
        review = await store.get_review_request(review_id_for("CONFLICT_ESCALATED", conflict.id))
        assert review.status == "COMPLETED"
        assert review.resolution_note == "per ministry letter"
        history = await store.list_resolutions(conflict.id)
        assert [r.id for r in history] == [escalation.id, decision.id]

    @pytest.mark.asyncio
    async def test_later_decision_reinstates_previous_loser(self, arbiter, store, pointer_pair):
        a, b = await pointer_pair("GUIDANCE", "GUIDANCE")
        [conflict] = await arbiter.detect_conflicts([a, b])
        await arbiter.resolve(conflict)
        await arbiter.record_human_decision(conflict.id, "sp_a", "alice")
        await arbiter.record_human_decision(conflict.id, "sp_b", "bob")

        assert (await store.get_pointer("sp_a")).conflict_status == "REJECTED_LOWER_AUTHORITY"
        assert (await store.get_pointer("sp_b")).conflict_status is None

    @pytest.mark.asyncio
    async def test_winner_must_be_a_side(self, arbiter, pointer_pair):
        a, b = await pointer_pair("GUIDANCE", "GUIDANCE")
        [conflict] = await arbiter.detect_conflicts([a, b])
        with pytest.raises(ValueError):
            await arbiter.record_human_decision(conflict.id, "sp_zzz", "alice")


class TestRuleConflicts:
    @pytest.mark.asyncio
    async def test_published_loser_revoked(self, arbiter, store, make_rule_fn):
        law = make_rule_fn("rule_vat_rate_v1", authority_tier="LAW", status="PUBLISHED", confidence=0.9)
        guidance = make_rule_fn("rule_vat_rate_v2", version=2, value="23%",
                                authority_tier="GUIDANCE", status="PUBLISHED", confidence=0.9)
        await store.put_rule(law)
        await store.put_rule(guidance)
        [conflict] = await arbiter.detect_conflicts([law, guidance])
        assert conflict.item_kind == "rule"

        await arbiter.resolve(conflict)
        revoked = await store.get_rule("rule_vat_rate_v2")
        assert revoked.status == "REVOKED"
        assert conflict.id in revoked.revoked_reason
        assert (await store.get_rule("rule_vat_rate_v1")).status == "PUBLISHED"

    @pytest.mark.asyncio
    async def test_unpublished_loser_rejected(self, arbiter, store, make_rule_fn):
        law = make_rule_fn("rule_vat_rate_v1", authority_tier="LAW", status="PUBLISHED", confidence=0.9)
        draft = make_rule_fn("rule_vat_rate_v2", version=2, value="23%",
                             authority_tier="PRACTICE", status="REVIEW", confidence=0.9)
        await store.put_rule(law)
        await store.put_rule(draft)
        [conflict] = await arbiter.detect_conflicts([law, draft])
        await arbiter.resolve(conflict)
        assert (await store.get_rule("rule_vat_rate_v2")).status == "REJECTED"


class TestReviewQueue:
    @pytest.mark.asyncio
    async def test_file_is_idempotent(self, store):
        queue = ReviewQueue(store)
        first = await queue.file("evidence", "ev_1", "EXTRACTION_PARKED", detail="timeout")
        again = await queue.file("evidence", "ev_1", "EXTRACTION_PARKED")
        assert first.id == again.id
        assert len(await queue.pending()) == 1
        requested = [e for e in await store.list_audit("ev_1") if e.event == "REVIEW_REQUESTED"]
        assert len(requested) == 1

    @pytest.mark.asyncio
    async def test_default_priorities(self, store):
        queue = ReviewQueue(store)
        assert (await queue.file("rule", "r1", "GRAPH_CYCLE")).priority == "CRITICAL"
        assert (await queue.file("evidence", "e1", "EXTRACTION_PARKED")).priority == "NORMAL"
        assert (await queue.file("rule", "r2", "GRAPH_CYCLE", priority="LOW")).priority == "LOW"

    @pytest.mark.asyncio
    async def test_complete_and_reopen(self, store):
        queue = ReviewQueue(store)
        request = await queue.file("rule", "r1", "GRAPH_CYCLE", detail="a -> b -> a")
        done = await queue.complete(request.id, "edges fixed")
        assert done.status == "COMPLETED"
        assert done.completed_at is not None
        assert await queue.pending() == []

        reopened = await queue.file("rule", "r1", "GRAPH_CYCLE", detail="again")
        assert reopened.status == "PENDING"
        assert reopened.detail == "again"
        assert reopened.completed_at is None

    @pytest.mark.asyncio
    async def test_complete_for_ignores_missing(self, store):
        await ReviewQueue(store).complete_for("GRAPH_CYCLE", "nothing")

    @pytest.mark.asyncio
    async def test_complete_unknown(self, store):
        with pytest.raises(NotFoundError):
            await ReviewQueue(store).complete("rv_missing")

    @pytest.mark.asyncio
    async def test_overdue(self, store):
        queue = ReviewQueue(store, sla_hours=1)
        await queue.file("rule", "r1", "GRAPH_CYCLE")
        assert await queue.overdue() == []
        assert len(await queue.overdue(now=utcnow() + timedelta(hours=2))) == 1


class TestConfidenceEscalation:
    @pytest.mark.asyncio
    async def test_low_confidence_pointer_escalates(self, arbiter, store, make_evidence_fn, make_pointer_fn):
        await store.insert_evidence_if_absent(make_evidence_fn("ev_a", authority_tier="LAW"))
        await store.insert_evidence_if_absent(make_evidence_fn("ev_b", authority_tier="PRACTICE"))
        a = make_pointer_fn("sp_a", evidence_id="ev_a", value="25%", confidence=0.6)
        b = make_pointer_fn("sp_b", evidence_id="ev_b", value="23%")
        await store.add_pointers([a, b])
        [conflict] = await arbiter.detect_conflicts([a, b])

        resolution = await arbiter.resolve(conflict)
        assert resolution.outcome == "NEEDS_HUMAN_REVIEW"
        assert "confidence below 0.85" in resolution.rationale
        assert (await store.get_conflict(conflict.id)).status == "ESCALATED"
        assert (await store.get_pointer("sp_b")).conflict_status is None

    @pytest.mark.asyncio
    async def test_threshold_from_scorer(self, store, make_evidence_fn, make_pointer_fn):
        arbiter = ConflictArbiter(store, scorer=AuthorityScorer(min_confidence=0.5))
        await store.insert_evidence_if_absent(make_evidence_fn("ev_a", authority_tier="LAW"))
        await store.insert_evidence_if_absent(make_evidence_fn("ev_b", authority_tier="PRACTICE"))
        a = make_pointer_fn("sp_a", evidence_id="ev_a", value="25%", confidence=0.6)
        b = make_pointer_fn("sp_b", evidence_id="ev_b", value="23%")
        await store.add_pointers([a, b])
        [conflict] = await arbiter.detect_conflicts([a, b])

        assert (await arbiter.resolve(conflict)).outcome == "SIDE_A_PREVAILS"
        assert (await store.get_pointer("sp_b")).conflict_status == "REJECTED_LOWER_AUTHORITY"
