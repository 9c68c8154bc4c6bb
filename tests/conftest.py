# tests/conftest.py — v1
"""Shared test fixtures for all unit and integration tests.

Provides settings tuned for fast retries, an in-memory store, sample
evidence text and a builder for extraction-service replies. No external
dependencies; the extraction service is always replayed.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest

from regtruth.config.settings import Settings
from regtruth.core.models import Evidence, Rule, SourcePointer
from regtruth.storage.memory_store import MemoryStore

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)

VAT_TEXT = (
    "Article 38. The standard rate of value added tax shall be 25% of the taxable amount. "
    "This rate applies from 2026-01-01 to all taxable supplies."
)


# === Helpers ===


def candidate(text: str, quote: str, value_type: str, value: str, **extra: Any) -> dict[str, Any]:
    """Candidate assertion whose offsets point at the first occurrence of quote."""
    start = text.index(quote)
    item = {
        "quote": quote,
        "start_offset": start,
        "end_offset": start + len(quote),
        "value_type": value_type,
        "value": value,
        "confidence": 0.9,
    }
    item.update(extra)
    return item


def make_evidence(evidence_id: str = "ev_1", text: str = VAT_TEXT, **overrides: Any) -> Evidence:
    base: dict[str, Any] = dict(
        id=evidence_id,
        source_url=f"https://law.example/{evidence_id}",
        content_hash=f"hash_{evidence_id}",
        raw_content=text,
        fetched_at=T0,
        authority_tier="LAW",
    )
    base.update(overrides)
    return Evidence(**base)


def make_pointer(pointer_id: str = "sp_1", **overrides: Any) -> SourcePointer:
    base: dict[str, Any] = dict(
        id=pointer_id,
        evidence_id="ev_1",
        topic_key="VAT_RATE",
        value_type="rate",
        value="25%",
        exact_quote="25%",
        start_offset=VAT_TEXT.index("25%"),
        end_offset=VAT_TEXT.index("25%") + 3,
        confidence=0.9,
        match_type="EXACT",
    )
    base.update(overrides)
    return SourcePointer(**base)


def make_rule(rule_id: str = "rule_vat_rate_v1", **overrides: Any) -> Rule:
    base: dict[str, Any] = dict(
        id=rule_id,
        topic_key="VAT_RATE",
        version=1,
        value="25%",
        value_type="rate",
        composition_complete=True,
    )
    base.update(overrides)
    return Rule(**base)


# === FIXTURES ===


@pytest.fixture
def settings() -> Settings:
    """Settings with short delays and no .env lookup."""
    return Settings(
        _env_file=None,
        extraction_provider="static",
        retry_base_delay_s=0.01,
        retry_max_delay_s=0.05,
        queue_poll_interval_s=0.005,
        extraction_timeout_s=2.0,
        extraction_rate_per_minute=1000,
        extraction_max_concurrent=4,
    )


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def vat_text() -> str:
    return VAT_TEXT


@pytest.fixture
def make_evidence_fn():
    """Factory fixture: make_evidence_fn("ev_2", authority_tier="GUIDANCE")."""
    return make_evidence


@pytest.fixture
def make_pointer_fn():
    return make_pointer


@pytest.fixture
def make_rule_fn():
    return make_rule


@pytest.fixture
def candidate_fn():
    return candidate
