# src/core/models.py — v1
"""Shared Pydantic domain models used across modules.

No module redefines these types — all imports come from core.models.
Offsets on SourcePointer are UTF-16 code units (see extraction/offsets.py).
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Timezone-aware current time; every timestamp in the store is UTC."""
    return datetime.now(timezone.utc)


# === VOCABULARIES ===

AuthorityTier = Literal["LAW", "REGULATION", "GUIDANCE", "PRACTICE"]
AUTHORITY_TIERS: tuple[str, ...] = ("LAW", "REGULATION", "GUIDANCE", "PRACTICE")

ContentClass = Literal["text", "html", "pdf", "scanned", "tabular", "unknown"]
StalenessStatus = Literal["FRESH", "AGING", "STALE", "EXPIRED", "UNAVAILABLE"]

ValueType = Literal[
    "threshold",
    "rate",
    "date",
    "deadline",
    "obligation",
    "definition",
    "procedure",
    "exception",
    "reference",
    "prohibition",
]
VALUE_TYPES: tuple[str, ...] = (
    "threshold",
    "rate",
    "date",
    "deadline",
    "obligation",
    "definition",
    "procedure",
    "exception",
    "reference",
    "prohibition",
)
NUMERIC_VALUE_TYPES: frozenset[str] = frozenset({"threshold", "rate"})

MatchType = Literal["EXACT", "NORMALIZED", "NOT_FOUND", "PENDING_VERIFICATION"]
PointerConflictStatus = Literal["REJECTED_LOWER_AUTHORITY"]

RuleStatus = Literal["DRAFT", "REVIEW", "ARBITRATED", "PUBLISHED", "REJECTED", "REVOKED"]
GraphStatus = Literal["PENDING", "CURRENT", "STALE"]

ConflictStatus = Literal["OPEN", "RESOLVED", "ESCALATED"]
ResolutionOutcome = Literal["SIDE_A_PREVAILS", "SIDE_B_PREVAILS", "NEEDS_HUMAN_REVIEW"]

EdgeRelation = Literal["DEPENDS_ON", "SUPERSEDES"]

WorkStage = Literal["extract", "compose", "graph"]
WorkStatus = Literal["QUEUED", "CLAIMED", "DONE", "DEAD_LETTER"]

ReviewReason = Literal[
    "CONFLICT_ESCALATED",
    "EVIDENCE_EXPIRED",
    "EXTRACTION_PARKED",
    "GRAPH_CYCLE",
    "PROVENANCE_FAILURE",
]
ReviewPriority = Literal["LOW", "NORMAL", "HIGH", "CRITICAL"]
ReviewStatus = Literal["PENDING", "COMPLETED"]


# === EVIDENCE ===


class ChangeSignal(BaseModel):
    """Externally supplied change-detection hints for a fetched source."""

    etag: str | None = None
    last_modified: datetime | None = None


class SourceMetadata(BaseModel):
    """Descriptive attributes of a source used for authority derivation."""

    publisher: str | None = None
    document_kind: str | None = None
    jurisdiction: str | None = None
    title: str | None = None


class Evidence(BaseModel):
    """Immutable record of one fetched version of a source document.

    Only the verification metadata (last_verified_at, etag, last_modified,
    consecutive_failures, staleness_status) and the tombstone fields may
    change after creation.
    """

    id: str
    source_url: str
    content_hash: str
    raw_content: str
    fetched_at: datetime
    content_class: ContentClass = "text"
    content_type_hint: str | None = None
    metadata: SourceMetadata = Field(default_factory=SourceMetadata)
    authority_tier: AuthorityTier = "PRACTICE"
    authority_mapping_version: str | None = None
    last_verified_at: datetime | None = None
    etag: str | None = None
    last_modified: datetime | None = None
    consecutive_failures: int = 0
    staleness_status: StalenessStatus = "FRESH"
    deleted_at: datetime | None = None
    deleted_reason: str | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


FROZEN_EVIDENCE_FIELDS: frozenset[str] = frozenset(
    {"id", "source_url", "raw_content", "content_hash", "fetched_at"}
)
MUTABLE_EVIDENCE_FIELDS: frozenset[str] = frozenset(
    {
        "last_verified_at",
        "etag",
        "last_modified",
        "consecutive_failures",
        "staleness_status",
        "deleted_at",
        "deleted_reason",
    }
)


# === POINTERS ===


class SourcePointer(BaseModel):
    """A verified, offset-anchored assertion extracted from one Evidence."""

    id: str
    evidence_id: str
    topic_key: str
    value_type: ValueType
    value: str
    exact_quote: str
    start_offset: int
    end_offset: int
    confidence: float
    match_type: MatchType = "PENDING_VERIFICATION"
    effective_from: date | None = None
    effective_to: date | None = None
    references: list[str] = Field(default_factory=list)
    conflict_status: PointerConflictStatus | None = None
    conflict_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_verified(self) -> bool:
        return self.match_type in ("EXACT", "NORMALIZED")


# === RULES ===


class Rule(BaseModel):
    """Versioned, topic-keyed regulatory statement built from pointers.

    graph_status is None only for legacy rules imported outside the
    pipeline; publication always sets it to PENDING.
    """

    id: str
    topic_key: str
    version: int = 1
    value: str | None = None
    value_type: ValueType
    pointer_ids: list[str] = Field(default_factory=list)
    effective_from: date | None = None
    effective_to: date | None = None
    applies_when: dict[str, Any] | None = None
    confidence: float = 0.0
    authority_tier: AuthorityTier | None = None
    composition_complete: bool = False
    missing_value_types: list[str] = Field(default_factory=list)
    status: RuleStatus = "DRAFT"
    graph_status: GraphStatus | None = None
    graph_error: str | None = None
    revoked_reason: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    published_at: datetime | None = None

    def covers(self, as_of: date) -> bool:
        """True if as_of falls inside [effective_from, effective_to] (inclusive)."""
        if self.effective_from is not None and as_of < self.effective_from:
            return False
        if self.effective_to is not None and as_of > self.effective_to:
            return False
        return True


# === CONFLICTS ===


class Conflict(BaseModel):
    """Pairwise contradiction; items referenced by id, never embedded."""

    id: str
    topic_key: str
    item_kind: Literal["pointer", "rule"]
    item_a_id: str
    item_b_id: str
    value_a: str | None = None
    value_b: str | None = None
    authority_a: float | None = None
    authority_b: float | None = None
    status: ConflictStatus = "OPEN"
    resolution_id: str | None = None
    detected_at: datetime = Field(default_factory=utcnow)


class Resolution(BaseModel):
    """Append-only resolution record. Later records supersede, never overwrite."""

    id: str
    conflict_id: str
    outcome: ResolutionOutcome
    winner_id: str | None = None
    loser_id: str | None = None
    authority_a: float
    authority_b: float
    rationale: str
    decided_by: str = "arbiter"
    supersedes: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


# === GRAPH ===


class GraphEdge(BaseModel):
    """Directed dependency between two rules. No timestamps: rebuilds are stable."""

    from_rule_id: str
    to_rule_id: str
    relation: EdgeRelation
    topic_key: str

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.from_rule_id, self.to_rule_id, self.relation)


# === PIPELINE ===


class WorkItem(BaseModel):
    """Durable queue entry. id doubles as the deduplication key."""

    id: str
    stage: WorkStage
    payload_id: str
    status: WorkStatus = "QUEUED"
    attempts: int = 0
    max_attempts: int = 5
    available_at: datetime = Field(default_factory=utcnow)
    last_error: str | None = None
    rerun_requested: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ReviewRequest(BaseModel):
    """Item waiting for a human decision."""

    id: str
    entity_kind: Literal["conflict", "evidence", "rule", "pointer"]
    entity_id: str
    reason: ReviewReason
    priority: ReviewPriority = "NORMAL"
    sla_hours: int = 48
    status: ReviewStatus = "PENDING"
    detail: str | None = None
    resolution_note: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None


class AuditEvent(BaseModel):
    """Append-only audit trail entry."""

    id: str
    event: str
    entity_kind: str
    entity_id: str
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
