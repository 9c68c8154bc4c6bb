# src/storage/memory_store.py — v1
"""In-process store (STORE_BACKEND=memory).

Default backend for tests and single-process runs. No method awaits while
holding partial state, so each call is atomic with respect to other
coroutines on the same event loop. Models are copied on the way in and out
so callers can never mutate stored state by reference.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from regtruth.core.errors import NotFoundError
from regtruth.core.models import (
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
from regtruth.storage.base_store import BaseStore, check_evidence_changes, merge_enqueue

logger = logging.getLogger(__name__)


def _copy(model: Any) -> Any:
    return model.model_copy(deep=True)


class MemoryStore(BaseStore):
    """Dict-backed store; insertion order is preserved for listings."""

    def __init__(self) -> None:
        self._evidence: dict[str, Evidence] = {}
        self._evidence_key: dict[tuple[str, str], str] = {}
        self._pointers: dict[str, SourcePointer] = {}
        self._rules: dict[str, Rule] = {}
        self._edges: dict[tuple[str, str, str], GraphEdge] = {}
        self._conflicts: dict[str, Conflict] = {}
        self._resolutions: dict[str, Resolution] = {}
        self._work: dict[str, WorkItem] = {}
        self._reviews: dict[str, ReviewRequest] = {}
        self._audit: list[AuditEvent] = []

    # --- Evidence ---

    async def insert_evidence_if_absent(self, evidence: Evidence) -> tuple[Evidence, bool]:
        key = (evidence.source_url, evidence.content_hash)
        existing_id = self._evidence_key.get(key)
        if existing_id is not None:
            return _copy(self._evidence[existing_id]), False
        self._evidence[evidence.id] = _copy(evidence)
        self._evidence_key[key] = evidence.id
        return _copy(evidence), True

    async def get_evidence(self, evidence_id: str) -> Evidence | None:
        ev = self._evidence.get(evidence_id)
        return _copy(ev) if ev else None

    async def find_evidence(self, source_url: str, content_hash: str) -> Evidence | None:
        ev_id = self._evidence_key.get((source_url, content_hash))
        return _copy(self._evidence[ev_id]) if ev_id else None

    async def list_evidence(self, source_url: str | None = None) -> list[Evidence]:
        items = [
            e for e in self._evidence.values()
            if source_url is None or e.source_url == source_url
        ]
        return [_copy(e) for e in sorted(items, key=lambda e: e.fetched_at)]

    async def update_evidence_metadata(
        self, evidence_id: str, changes: dict[str, Any]
    ) -> Evidence:
        check_evidence_changes(evidence_id, changes)
        ev = self._evidence.get(evidence_id)
        if ev is None:
            raise NotFoundError("evidence", evidence_id)
        updated = ev.model_copy(update=changes)
        self._evidence[evidence_id] = updated
        return _copy(updated)

    # --- Pointers ---

    async def add_pointers(self, pointers: list[SourcePointer]) -> int:
        inserted = 0
        for p in pointers:
            if p.id not in self._pointers:
                self._pointers[p.id] = _copy(p)
                inserted += 1
        return inserted

    async def get_pointer(self, pointer_id: str) -> SourcePointer | None:
        p = self._pointers.get(pointer_id)
        return _copy(p) if p else None

    async def list_pointers(
        self, evidence_id: str | None = None, topic_key: str | None = None
    ) -> list[SourcePointer]:
        return [
            _copy(p) for p in self._pointers.values()
            if (evidence_id is None or p.evidence_id == evidence_id)
            and (topic_key is None or p.topic_key == topic_key)
        ]

    async def annotate_pointer(
        self,
        pointer_id: str,
        conflict_status: PointerConflictStatus | None,
        conflict_id: str | None,
    ) -> SourcePointer:
        p = self._pointers.get(pointer_id)
        if p is None:
            raise NotFoundError("pointer", pointer_id)
        updated = p.model_copy(
            update={"conflict_status": conflict_status, "conflict_id": conflict_id}
        )
        self._pointers[pointer_id] = updated
        return _copy(updated)

    # --- Rules ---

    async def put_rule(self, rule: Rule) -> None:
        self._rules[rule.id] = _copy(rule)

    async def get_rule(self, rule_id: str) -> Rule | None:
        r = self._rules.get(rule_id)
        return _copy(r) if r else None

    async def list_rules(
        self, topic_key: str | None = None, status: RuleStatus | None = None
    ) -> list[Rule]:
        return [
            _copy(r) for r in self._rules.values()
            if (topic_key is None or r.topic_key == topic_key)
            and (status is None or r.status == status)
        ]

    async def set_graph_status(
        self, rule_id: str, status: GraphStatus, error: str | None = None
    ) -> Rule:
        r = self._rules.get(rule_id)
        if r is None:
            raise NotFoundError("rule", rule_id)
        updated = r.model_copy(update={"graph_status": status, "graph_error": error})
        self._rules[rule_id] = updated
        return _copy(updated)

    async def commit_graph_result(
        self,
        rule_id: str,
        edges: list[GraphEdge],
        status: GraphStatus,
        error: str | None = None,
    ) -> Rule:
        r = self._rules.get(rule_id)
        if r is None:
            raise NotFoundError("rule", rule_id)
        for key in [k for k in self._edges if k[0] == rule_id]:
            del self._edges[key]
        for edge in edges:
            self._edges[edge.key] = _copy(edge)
        updated = r.model_copy(update={"graph_status": status, "graph_error": error})
        self._rules[rule_id] = updated
        return _copy(updated)

    async def list_edges(
        self, from_rule_id: str | None = None, to_rule_id: str | None = None
    ) -> list[GraphEdge]:
        return [
            _copy(self._edges[k]) for k in sorted(self._edges)
            if (from_rule_id is None or k[0] == from_rule_id)
            and (to_rule_id is None or k[1] == to_rule_id)
        ]

    # --- Conflicts & resolutions ---

    async def add_conflict_if_absent(self, conflict: Conflict) -> tuple[Conflict, bool]:
        existing = self._conflicts.get(conflict.id)
        if existing is not None:
            return _copy(existing), False
        self._conflicts[conflict.id] = _copy(conflict)
        return _copy(conflict), True

    async def get_conflict(self, conflict_id: str) -> Conflict | None:
        c = self._conflicts.get(conflict_id)
        return _copy(c) if c else None

    async def list_conflicts(
        self,
        topic_key: str | None = None,
        status: str | None = None,
        item_id: str | None = None,
    ) -> list[Conflict]:
        return [
            _copy(c) for c in self._conflicts.values()
            if (topic_key is None or c.topic_key == topic_key)
            and (status is None or c.status == status)
            and (item_id is None or item_id in (c.item_a_id, c.item_b_id))
        ]

    async def update_conflict(self, conflict: Conflict) -> None:
        if conflict.id not in self._conflicts:
            raise NotFoundError("conflict", conflict.id)
        self._conflicts[conflict.id] = _copy(conflict)

    async def append_resolution(self, resolution: Resolution) -> None:
        if resolution.id in self._resolutions:
            raise ValueError(f"Resolution {resolution.id} already recorded")
        self._resolutions[resolution.id] = _copy(resolution)

    async def list_resolutions(self, conflict_id: str) -> list[Resolution]:
        return [
            _copy(r) for r in self._resolutions.values() if r.conflict_id == conflict_id
        ]

    # --- Work queue ---

    async def enqueue_work(self, item: WorkItem) -> bool:
        to_store, will_run = merge_enqueue(self._work.get(item.id), item)
        if to_store is not None:
            self._work[item.id] = _copy(to_store)
        return will_run

    async def claim_work(self, stage: WorkStage, now: datetime) -> WorkItem | None:
        candidates = [
            w for w in self._work.values()
            if w.stage == stage and w.status == "QUEUED" and w.available_at <= now
        ]
        if not candidates:
            return None
        chosen = min(candidates, key=lambda w: (w.available_at, w.created_at))
        claimed = chosen.model_copy(
            update={
                "status": "CLAIMED",
                "attempts": chosen.attempts + 1,
                "updated_at": utcnow(),
            }
        )
        self._work[claimed.id] = claimed
        return _copy(claimed)

    async def update_work(self, item: WorkItem) -> None:
        self._work[item.id] = _copy(item)

    async def get_work(self, item_id: str) -> WorkItem | None:
        w = self._work.get(item_id)
        return _copy(w) if w else None

    async def list_work(
        self, stage: WorkStage | None = None, status: WorkStatus | None = None
    ) -> list[WorkItem]:
        return [
            _copy(w) for w in self._work.values()
            if (stage is None or w.stage == stage)
            and (status is None or w.status == status)
        ]

    # --- Human review ---

    async def add_review_request(self, request: ReviewRequest) -> bool:
        if request.id in self._reviews:
            return False
        self._reviews[request.id] = _copy(request)
        return True

    async def get_review_request(self, request_id: str) -> ReviewRequest | None:
        r = self._reviews.get(request_id)
        return _copy(r) if r else None

    async def update_review_request(self, request: ReviewRequest) -> None:
        if request.id not in self._reviews:
            raise NotFoundError("review_request", request.id)
        self._reviews[request.id] = _copy(request)

    async def list_review_requests(self, status: str | None = None) -> list[ReviewRequest]:
        return [
            _copy(r) for r in self._reviews.values()
            if status is None or r.status == status
        ]

    # --- Audit ---

    async def append_audit(self, event: AuditEvent) -> None:
        self._audit.append(_copy(event))

    async def list_audit(self, entity_id: str | None = None) -> list[AuditEvent]:
        return [
            _copy(e) for e in self._audit
            if entity_id is None or e.entity_id == entity_id
        ]
