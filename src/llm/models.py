# src/llm/models.py — v1
"""Extraction-service boundary types.

The service's reply is untrusted: ExtractionResponse carries the raw text
and CandidateAssertion is parsed from it leniently so that one bad item
does not discard the whole batch. Verification happens downstream.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class TopicHint(BaseModel):
    """What the service should look for: one topic and its value types."""

    topic_key: str
    description: str = ""
    value_types: list[str] = Field(default_factory=list)


class ExtractionRequest(BaseModel):
    """Evidence text plus topic schema sent to the extraction service."""

    evidence_id: str
    source_url: str
    text: str
    topics: list[TopicHint]
    index_system: str = "utf16"


class CandidateAssertion(BaseModel):
    """One claimed assertion as returned by the service (unverified)."""

    quote: str
    start_offset: int
    end_offset: int
    value_type: str
    value: str
    confidence: float
    topic_key: str | None = None
    references: list[str] = Field(default_factory=list)
    effective_from: str | None = None
    effective_to: str | None = None


class ExtractionPayload(BaseModel):
    """Top-level JSON shape the service is asked to produce."""

    candidates: list[CandidateAssertion] = Field(default_factory=list)


class ExtractionResponse(BaseModel):
    """Normalized response from any extraction provider."""

    content: str
    provider: str
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: int = 0
    raw_response: Any = None
