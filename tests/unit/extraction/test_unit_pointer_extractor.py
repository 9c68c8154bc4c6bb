# tests/unit/extraction/test_unit_pointer_extractor.py — v1
"""Tests for extraction/pointer_extractor.py with a replayed extraction service."""

from __future__ import annotations

import asyncio
from datetime import date

import pytest

from regtruth.composer.topics import default_topic_registry
from regtruth.core.errors import ExtractionFailure
from regtruth.extraction.pointer_extractor import PointerExtractor, make_pointer_id
from regtruth.llm.adapters.static_adapter import StaticExtractionClient
from regtruth.llm.base_client import BaseExtractionClient
from regtruth.llm.models import ExtractionRequest, ExtractionResponse


class _SlowClient(BaseExtractionClient):
    @property
    def provider_name(self) -> str:
        return "slow"

    async def extract(self, request: ExtractionRequest) -> ExtractionResponse:
        await asyncio.sleep(5)
        return ExtractionResponse(content="{}", provider="slow")


@pytest.fixture
def topics():
    return default_topic_registry()


def _extractor(client, topics, settings) -> PointerExtractor:
    return PointerExtractor(client, topics, settings)


class TestMakePointerId:
    def test_deterministic(self):
        a = make_pointer_id("ev_1", "VAT_RATE", "rate", "25%", 10, 13)
        assert a == make_pointer_id("ev_1", "VAT_RATE", "rate", "25%", 10, 13)
        assert a != make_pointer_id("ev_1", "VAT_RATE", "rate", "25%", 10, 14)
        assert a.startswith("sp_")


class TestExtract:
    @pytest.mark.asyncio
    async def test_verified_pointers(self, topics, settings, vat_text, candidate_fn, make_evidence_fn):
        evidence = make_evidence_fn()
        client = StaticExtractionClient({evidence.id: {"candidates": [
            candidate_fn(vat_text, "25%", "rate", "25%", topic_key="VAT_RATE"),
            candidate_fn(vat_text, "2026-01-01", "date", "2026-01-01", topic_key="VAT_RATE",
                         effective_from="2026-01-01"),
        ]}})
        pointers = await _extractor(client, topics, settings).extract(evidence)

        assert [p.match_type for p in pointers] == ["EXACT", "EXACT"]
        rate = pointers[0]
        assert rate.exact_quote == vat_text[rate.start_offset:rate.end_offset]
        assert pointers[1].effective_from == date(2026, 1, 1)
        assert len(client.calls) == 1
        assert {t.topic_key for t in client.calls[0].topics} == set(topics.keys)

    @pytest.mark.asyncio
    async def test_mismatched_offsets_kept_as_not_found(self, topics, settings, make_evidence_fn):
        text = "Preamble. " * 15 + "The standard rate is 25%."
        evidence = make_evidence_fn(text=text)
        client = StaticExtractionClient({evidence.id: {"candidates": [{
            "quote": "The standard rate is 25%.", "start_offset": 100, "end_offset": 120,
            "value_type": "rate", "value": "25%", "confidence": 0.95, "topic_key": "VAT_RATE",
        }]}})
        pointers = await _extractor(client, topics, settings).extract(evidence)
        assert len(pointers) == 1
        assert pointers[0].match_type == "NOT_FOUND"
        assert not pointers[0].is_verified

    @pytest.mark.asyncio
    async def test_idempotent_ids(self, topics, settings, vat_text, candidate_fn, make_evidence_fn):
        evidence = make_evidence_fn()
        reply = {"candidates": [candidate_fn(vat_text, "25%", "rate", "25%", topic_key="VAT_RATE")]}
        client = StaticExtractionClient({evidence.id: reply})
        extractor = _extractor(client, topics, settings)
        first = await extractor.extract(evidence)
        second = await extractor.extract(evidence)
        assert [p.id for p in first] == [p.id for p in second]

    @pytest.mark.asyncio
    async def test_screening_drops_bad_candidates(self, topics, settings, vat_text, candidate_fn, make_evidence_fn):
        evidence = make_evidence_fn()
        good = candidate_fn(vat_text, "25%", "rate", "25%", topic_key="VAT_RATE")
        client = StaticExtractionClient({evidence.id: {"candidates": [
            good,
            {**good, "topic_key": "UNKNOWN_TOPIC"},
            {**good, "value_type": "colour"},
            {**good, "confidence": 0.1},
            {**good, "end_offset": good["start_offset"]},
            {"quote": "missing fields"},
        ]}})
        pointers = await _extractor(client, topics, settings).extract(evidence)
        assert len(pointers) == 1

    @pytest.mark.asyncio
    async def test_references_filtered_to_known_topics(self, topics, settings, vat_text, candidate_fn, make_evidence_fn):
        evidence = make_evidence_fn()
        client = StaticExtractionClient({evidence.id: {"candidates": [
            candidate_fn(vat_text, "25%", "rate", "25%", topic_key="VAT_RATE",
                         references=["vat_reduced_rate", "VAT_RATE", "NOT_A_TOPIC"]),
        ]}})
        pointers = await _extractor(client, topics, settings).extract(evidence)
        assert pointers[0].references == ["VAT_REDUCED_RATE"]

    @pytest.mark.asyncio
    async def test_malformed_then_valid_reply_retries(self, topics, settings, vat_text, candidate_fn, make_evidence_fn):
        evidence = make_evidence_fn()
        client = StaticExtractionClient({evidence.id: [
            "this is not json",
            {"candidates": [candidate_fn(vat_text, "25%", "rate", "25%", topic_key="VAT_RATE")]},
        ]})
        extractor = _extractor(client, topics, settings)
        pointers = await extractor.extract(evidence)
        assert len(pointers) == 1
        assert len(client.calls) == 2
        assert extractor.call_logger.summary() == {"success": 1}

    @pytest.mark.asyncio
    async def test_budget_exhausted_raises_extraction_failure(self, topics, settings, make_evidence_fn):
        evidence = make_evidence_fn()
        client = StaticExtractionClient({evidence.id: "garbage"})
        with pytest.raises(ExtractionFailure) as exc_info:
            await _extractor(client, topics, settings).extract(evidence)
        assert exc_info.value.attempts == settings.extraction_max_attempts
        assert len(client.calls) == settings.extraction_max_attempts

    @pytest.mark.asyncio
    async def test_empty_reply_is_failure(self, topics, settings, make_evidence_fn):
        with pytest.raises(ExtractionFailure, match="no usable candidates"):
            await _extractor(StaticExtractionClient(), topics, settings).extract(make_evidence_fn())

    @pytest.mark.asyncio
    async def test_timeout_is_bounded(self, topics, make_evidence_fn, settings):
        quick = settings.model_copy(update={"extraction_timeout_s": 0.01, "extraction_max_attempts": 2})
        extractor = _extractor(_SlowClient(), topics, quick)
        with pytest.raises(ExtractionFailure, match="did not respond"):
            await extractor.extract(make_evidence_fn())
        assert extractor.call_logger.summary() == {"timeout": 2}

    @pytest.mark.asyncio
    async def test_tombstoned_evidence_skipped(self, topics, settings, make_evidence_fn):
        from regtruth.core.models import utcnow

        client = StaticExtractionClient()
        evidence = make_evidence_fn(deleted_at=utcnow(), deleted_reason="withdrawn")
        assert await _extractor(client, topics, settings).extract(evidence) == []
        assert client.calls == []
