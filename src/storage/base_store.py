# src/storage/base_store.py — v1
"""Abstract persistence interface for the evidence-to-rule pipeline.

Every method that the concurrency model relies on for atomicity is marked
"Atomic" in its docstring: implementations must apply it as a single
transaction with no interleaving from other coroutines.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from regtruth.core.errors import ImmutabilityViolation
from regtruth.core.models import (
    FROZEN_EVIDENCE_FIELDS,
    MUTABLE_EVIDENCE_FIELDS,
    AuditEvent,
    Conflict,
    Evidence,
    GraphEdge,
    GraphStatus,
    PointerConflictStatus,
    Resolution,
    ReviewRequest,
    Rule,
    RuleStatus,
    SourcePointer,
    WorkItem,
    WorkStage,
    WorkStatus,
    utcnow,
)


class BaseStore(ABC):
    """Unified interface for storage backends."""

    # --- Evidence ---

    @abstractmethod
    async def insert_evidence_if_absent(self, evidence: Evidence) -> tuple[Evidence, bool]:
        """Atomic get-or-create on (source_url, content_hash).

        Returns:
            (stored record, created flag). The stored record is the
            pre-existing one when created is False.
        """

    @abstractmethod
    async def get_evidence(self, evidence_id: str) -> Evidence | None:
        """Fetch evidence by id, tombstoned records included."""

    @abstractmethod
    async def find_evidence(self, source_url: str, content_hash: str) -> Evidence | None:
        """Lookup by natural key."""

    @abstractmethod
    async def list_evidence(self, source_url: str | None = None) -> list[Evidence]:
        """All evidence (optionally for one URL) ordered by fetched_at."""

    @abstractmethod
    async def update_evidence_metadata(
        self, evidence_id: str, changes: dict[str, Any]
    ) -> Evidence:
        """Apply changes to mutable metadata fields only.

        Raises:
            ImmutabilityViolation: If any frozen field is named in changes.
            NotFoundError: If the evidence does not exist.
        """

    # --- Pointers ---

    @abstractmethod
    async def add_pointers(self, pointers: list[SourcePointer]) -> int:
        """Insert pointers not already stored (by id). Returns count inserted."""

    @abstractmethod
    async def get_pointer(self, pointer_id: str) -> SourcePointer | None:
        """Fetch one pointer."""

    @abstractmethod
    async def list_pointers(
        self, evidence_id: str | None = None, topic_key: str | None = None
    ) -> list[SourcePointer]:
        """List pointers filtered by evidence and/or topic."""

    @abstractmethod
    async def annotate_pointer(
        self,
        pointer_id: str,
        conflict_status: PointerConflictStatus | None,
        conflict_id: str | None,
    ) -> SourcePointer:
        """Write the arbiter's conflict annotation; the only pointer mutation."""

    # --- Rules ---

    @abstractmethod
    async def put_rule(self, rule: Rule) -> None:
        """Insert or replace a rule."""

    @abstractmethod
    async def get_rule(self, rule_id: str) -> Rule | None:
        """Fetch one rule."""

    @abstractmethod
    async def list_rules(
        self, topic_key: str | None = None, status: RuleStatus | None = None
    ) -> list[Rule]:
        """List rules filtered by topic and/or status."""

    @abstractmethod
    async def set_graph_status(
        self, rule_id: str, status: GraphStatus, error: str | None = None
    ) -> Rule:
        """Set graph_status and graph_error without touching edges."""

    @abstractmethod
    async def commit_graph_result(
        self,
        rule_id: str,
        edges: list[GraphEdge],
        status: GraphStatus,
        error: str | None = None,
    ) -> Rule:
        """Atomic: replace all outgoing edges of rule_id and set its graph status."""

    # --- Edges ---

    @abstractmethod
    async def list_edges(
        self, from_rule_id: str | None = None, to_rule_id: str | None = None
    ) -> list[GraphEdge]:
        """List edges filtered by endpoint, ordered by key."""

    # --- Conflicts & resolutions ---

    @abstractmethod
    async def add_conflict_if_absent(self, conflict: Conflict) -> tuple[Conflict, bool]:
        """Atomic get-or-create on conflict id (unordered-pair key)."""

    @abstractmethod
    async def get_conflict(self, conflict_id: str) -> Conflict | None:
        """Fetch one conflict."""

    @abstractmethod
    async def list_conflicts(
        self,
        topic_key: str | None = None,
        status: str | None = None,
        item_id: str | None = None,
    ) -> list[Conflict]:
        """List conflicts; item_id matches either side."""

    @abstractmethod
    async def update_conflict(self, conflict: Conflict) -> None:
        """Replace a conflict's mutable state (status, scores, resolution_id)."""

    @abstractmethod
    async def append_resolution(self, resolution: Resolution) -> None:
        """Append a resolution. Raises ValueError if the id already exists."""

    @abstractmethod
    async def list_resolutions(self, conflict_id: str) -> list[Resolution]:
        """Resolution history of one conflict, oldest first."""

    # --- Work queue ---

    @abstractmethod
    async def enqueue_work(self, item: WorkItem) -> bool:
        """Atomic enqueue deduplicated on item id.

        A QUEUED duplicate is a no-op. A CLAIMED duplicate is flagged to run
        again once acknowledged. A DONE item is re-armed. DEAD_LETTER items
        are left alone until explicitly requeued.

        Returns:
            True if the item will run (again) because of this call.
        """

    @abstractmethod
    async def claim_work(self, stage: WorkStage, now: datetime) -> WorkItem | None:
        """Atomic: take the oldest available QUEUED item of a stage."""

    @abstractmethod
    async def update_work(self, item: WorkItem) -> None:
        """Persist a work item's new state."""

    @abstractmethod
    async def get_work(self, item_id: str) -> WorkItem | None:
        """Fetch one work item."""

    @abstractmethod
    async def list_work(
        self, stage: WorkStage | None = None, status: WorkStatus | None = None
    ) -> list[WorkItem]:
        """List work items."""

    # --- Human review ---

    @abstractmethod
    async def add_review_request(self, request: ReviewRequest) -> bool:
        """Insert unless a request with the same id exists."""

    @abstractmethod
    async def get_review_request(self, request_id: str) -> ReviewRequest | None:
        """Fetch one review request."""

    @abstractmethod
    async def update_review_request(self, request: ReviewRequest) -> None:
        """Persist a review request's new state."""

    @abstractmethod
    async def list_review_requests(self, status: str | None = None) -> list[ReviewRequest]:
        """List review requests."""

    # --- Audit ---

    @abstractmethod
    async def append_audit(self, event: AuditEvent) -> None:
        """Append an audit event."""

    @abstractmethod
    async def list_audit(self, entity_id: str | None = None) -> list[AuditEvent]:
        """Audit events, oldest first."""

    async def close(self) -> None:
        """Release backend resources."""


# --- Helpers shared by backends ---


def check_evidence_changes(evidence_id: str, changes: dict[str, Any]) -> None:
    """Reject any change that touches a frozen or unknown evidence field."""
    frozen = [k for k in changes if k in FROZEN_EVIDENCE_FIELDS]
    if frozen:
        raise ImmutabilityViolation(evidence_id, frozen)
    unknown = [k for k in changes if k not in MUTABLE_EVIDENCE_FIELDS]
    if unknown:
        raise ValueError(f"Unknown evidence fields: {sorted(unknown)}")


def merge_enqueue(existing: WorkItem | None, item: WorkItem) -> tuple[WorkItem | None, bool]:
    """Decide what an enqueue does given the stored item.

    Returns:
        (item to persist or None for no write, whether the work will run).
    """
    if existing is None:
        return item, True
    if existing.status == "QUEUED":
        return None, False
    if existing.status == "CLAIMED":
        if existing.rerun_requested:
            return None, False
        return existing.model_copy(update={"rerun_requested": True}), True
    if existing.status == "DONE":
        return (
            existing.model_copy(
                update={
                    "status": "QUEUED",
                    "attempts": 0,
                    "last_error": None,
                    "available_at": item.available_at,
                    "max_attempts": item.max_attempts,
                    "updated_at": utcnow(),
                }
            ),
            True,
        )
    return None, False
