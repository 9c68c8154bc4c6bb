# src/api/models.py — v1
"""API-level models returned by RegTruthFacade."""

from __future__ import annotations

from pydantic import BaseModel, Field

from regtruth.core.models import AuthorityTier, ContentClass


class IngestResult(BaseModel):
    """Outcome of handing one fetched document to the pipeline."""

    evidence_id: str
    source_url: str
    created: bool
    authority_tier: AuthorityTier
    content_class: ContentClass
    scheduled: bool = False


class ProcessSummary(BaseModel):
    """Queue and review state after a processing run."""

    processed: dict[str, int] = Field(default_factory=dict)
    failed: dict[str, int] = Field(default_factory=dict)
    dead_letters: int = 0
    pending_reviews: int = 0
    published_rules: int = 0
