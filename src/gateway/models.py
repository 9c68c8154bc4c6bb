# src/gateway/models.py — v1
"""Result types of the query/answer gateway and the provenance read API."""

from __future__ import annotations

from datetime import date
from typing import Literal

from pydantic import BaseModel, Field

from regtruth.core.models import AuthorityTier, GraphStatus, MatchType

RefusalReason = Literal[
    "NO_RULE_FOUND",
    "GRAPH_INCONSISTENT",
    "CONFLICT_UNRESOLVED",
    "NOT_APPLICABLE",
]


class Citation(BaseModel):
    """Exact quote backing an answer."""

    pointer_id: str
    evidence_id: str
    source_url: str
    exact_quote: str
    start_offset: int
    end_offset: int
    authority_tier: AuthorityTier | None = None


class AnswerResult(BaseModel):
    """Either a sourced value or a typed refusal; never a guess."""

    success: bool
    topic_key: str
    as_of: date
    value: str | None = None
    value_type: str | None = None
    refusal_reason: RefusalReason | None = None
    message: str | None = None
    citations: list[Citation] = Field(default_factory=list)
    confidence: float | None = None
    rule_id: str | None = None
    graph_status: GraphStatus | None = None
    legacy: bool = False


class ProvenanceLink(BaseModel):
    """One pointer of a rule, resolved down to the evidence offsets."""

    pointer_id: str
    evidence_id: str
    source_url: str | None = None
    content_hash: str | None = None
    exact_quote: str
    start_offset: int
    end_offset: int
    match_type: MatchType
    verified: bool
    evidence_deleted: bool = False
    authority_tier: AuthorityTier | None = None


class ProvenanceChain(BaseModel):
    """Rule -> pointers -> evidence, each link re-verified on read."""

    rule_id: str
    topic_key: str
    version: int
    value: str | None
    status: str
    graph_status: GraphStatus | None
    links: list[ProvenanceLink] = Field(default_factory=list)

    @property
    def complete(self) -> bool:
        return bool(self.links) and all(link.verified for link in self.links)
