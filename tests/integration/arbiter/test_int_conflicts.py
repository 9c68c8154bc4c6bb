# tests/integration/arbiter/test_int_conflicts.py — v1
"""Integration: conflicting sources, automatic arbitration and human decisions."""

from __future__ import annotations

from datetime import date

import pytest

AS_OF = date(2026, 6, 1)

LAW_URL = "https://law.example/vat-act"
GUIDANCE_URL = "https://tax.example/guidance/vat-rates"
CIRCULAR_URL = "https://tax.example/circulars/7-2026"

GUIDANCE_TEXT = (
    "Guidance note 12. Supplies made on or after 2026-01-01 are taxed at the standard "
    "rate of 23% unless a reduced rate applies."
)
CIRCULAR_TEXT = (
    "Circular 7/2026. With effect from 2026-01-01 the standard VAT rate is 24% "
    "for all taxable supplies."
)


@pytest.fixture
def rate_candidates(candidate_fn):
    """Factory: rate + start-date candidates for a document."""

    def _candidates(text: str, rate: str, date_confidence: float = 0.9):
        return [
            candidate_fn(text, rate, "rate", rate, topic_key="VAT_RATE"),
            candidate_fn(text, "2026-01-01", "date", "2026-01-01", topic_key="VAT_RATE",
                         effective_from="2026-01-01", confidence=date_confidence),
        ]

    return _candidates


@pytest.fixture
def rate_pointer(facade):
    async def _rate_pointer(evidence_id: str):
        pointers = await facade.store.list_pointers(evidence_id=evidence_id)
        [pointer] = [p for p in pointers if p.value_type == "rate"]
        return pointer

    return _rate_pointer


# ---------------------------------------------------------------------------
# Higher authority wins automatically
# ---------------------------------------------------------------------------

class TestLawOverridesGuidance:
    @pytest.mark.asyncio
    async def test_statute_replaces_guidance_rule(
        self, facade, ingest, rate_candidates, rate_pointer, vat_text
    ):
        guidance = await ingest(GUIDANCE_URL, GUIDANCE_TEXT,
                                rate_candidates(GUIDANCE_TEXT, "23%", 0.8), document_kind="guidance")
        await facade.process(timeout_s=10)
        assert guidance.authority_tier == "GUIDANCE"
        assert (await facade.answer("VAT_RATE", AS_OF)).value == "23%"
        [guidance_rule] = await facade.rules("VAT_RATE")

        law = await ingest(LAW_URL, vat_text, rate_candidates(vat_text, "25%", 0.95),
                           document_kind="statute")
        summary = await facade.process(timeout_s=10)
        assert summary.pending_reviews == 0

        answer = await facade.answer("VAT_RATE", AS_OF)
        assert answer.success
        assert answer.value == "25%"
        assert {c.evidence_id for c in answer.citations} == {law.evidence_id}

        loser = await rate_pointer(guidance.evidence_id)
        assert loser.conflict_status == "REJECTED_LOWER_AUTHORITY"
        assert (await rate_pointer(law.evidence_id)).conflict_status is None

        old = await facade.store.get_rule(guidance_rule.id)
        assert old.status == "REVOKED"
        assert old.graph_status == "STALE"

        [conflict] = await facade.store.list_conflicts(topic_key="VAT_RATE")
        assert conflict.status == "RESOLVED"
        [resolution] = await facade.store.list_resolutions(conflict.id)
        assert resolution.winner_id == (await rate_pointer(law.evidence_id)).id
        assert resolution.decided_by == "arbiter"

    @pytest.mark.asyncio
    async def test_order_of_arrival_does_not_matter(
        self, facade, ingest, rate_candidates, vat_text
    ):
        await ingest(LAW_URL, vat_text, rate_candidates(vat_text, "25%", 0.95), document_kind="statute")
        await facade.process(timeout_s=10)
        await ingest(GUIDANCE_URL, GUIDANCE_TEXT,
                     rate_candidates(GUIDANCE_TEXT, "23%", 0.8), document_kind="guidance")
        await facade.process(timeout_s=10)

        assert (await facade.answer("VAT_RATE", AS_OF)).value == "25%"
        published = await facade.store.list_rules("VAT_RATE", "PUBLISHED")
        assert [r.value for r in published] == ["25%"]


# ---------------------------------------------------------------------------
# Equal authority escalates to a human
# ---------------------------------------------------------------------------

class TestEqualAuthorityEscalation:
    @pytest.mark.asyncio
    async def test_escalation_then_human_decision(
        self, facade, ingest, rate_candidates, rate_pointer
    ):
        first = await ingest(GUIDANCE_URL, GUIDANCE_TEXT,
                             rate_candidates(GUIDANCE_TEXT, "23%", 0.8), document_kind="guidance")
        await facade.process(timeout_s=10)
        [v1] = await facade.rules("VAT_RATE")

        second = await ingest(CIRCULAR_URL, CIRCULAR_TEXT,
                              rate_candidates(CIRCULAR_TEXT, "24%", 0.95), document_kind="circular")
        await facade.process(timeout_s=10)

        [conflict] = await facade.store.list_conflicts(topic_key="VAT_RATE")
        assert conflict.status == "ESCALATED"
        [review] = await facade.pending_reviews()
        assert review.reason == "CONFLICT_ESCALATED"
        assert review.entity_id == conflict.id
        assert review.priority == "HIGH"

        refused = await facade.answer("VAT_RATE", AS_OF)
        assert refused.refusal_reason == "CONFLICT_UNRESOLVED"
        assert refused.value is None
        assert not await facade.store.list_rules("VAT_RATE", "ARBITRATED")

        winner = await rate_pointer(second.evidence_id)
        await facade.decide_conflict(conflict.id, winner.id, "alice", "circular is the later text")
        await facade.process(timeout_s=10)

        answer = await facade.answer("VAT_RATE", AS_OF)
        assert answer.success
        assert answer.value == "24%"
        assert (await facade.store.get_rule(v1.id)).status == "REVOKED"
        assert (await rate_pointer(first.evidence_id)).conflict_status == "REJECTED_LOWER_AUTHORITY"
        assert await facade.pending_reviews() == []

        history = await facade.store.list_resolutions(conflict.id)
        assert [r.outcome for r in history][0] == "NEEDS_HUMAN_REVIEW"
        assert history[-1].decided_by == "alice"
        assert history[-1].supersedes == history[0].id

    @pytest.mark.asyncio
    async def test_two_statutes_always_escalate(self, facade, ingest, rate_candidates, vat_text):
        await ingest(LAW_URL, vat_text, rate_candidates(vat_text, "25%"), document_kind="statute")
        await facade.process(timeout_s=10)
        await ingest("https://law.example/vat-amendment", CIRCULAR_TEXT,
                     rate_candidates(CIRCULAR_TEXT, "24%"), document_kind="statute")
        await facade.process(timeout_s=10)

        [conflict] = await facade.store.list_conflicts(topic_key="VAT_RATE")
        assert conflict.status == "ESCALATED"
        assert (await facade.answer("VAT_RATE", AS_OF)).refusal_reason == "CONFLICT_UNRESOLVED"
