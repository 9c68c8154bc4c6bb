# src/arbiter/review_queue.py — v1
"""Human review queue: escalated conflicts, parked extractions, graph cycles.

Requests are keyed on (reason, entity), so filing the same problem twice
keeps one request; filing it again after completion reopens it.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timedelta

from regtruth.core.errors import NotFoundError
from regtruth.core.models import ReviewPriority, ReviewReason, ReviewRequest, utcnow
from regtruth.storage.base_store import BaseStore
from regtruth.tracking.audit_log import AuditLog

logger = logging.getLogger(__name__)

_DEFAULT_PRIORITY: dict[str, ReviewPriority] = {
    "CONFLICT_ESCALATED": "HIGH",
    "EVIDENCE_EXPIRED": "HIGH",
    "GRAPH_CYCLE": "CRITICAL",
    "EXTRACTION_PARKED": "NORMAL",
    "PROVENANCE_FAILURE": "HIGH",
}


def review_id_for(reason: str, entity_id: str) -> str:
    return f"rv_{hashlib.sha256(f'{reason}|{entity_id}'.encode()).hexdigest()[:16]}"


class ReviewQueue:
    def __init__(
        self, store: BaseStore, sla_hours: int = 48, audit: AuditLog | None = None
    ) -> None:
        self._store = store
        self._sla_hours = sla_hours
        self._audit = audit or AuditLog(store)

    async def file(
        self,
        entity_kind: str,
        entity_id: str,
        reason: ReviewReason,
        detail: str | None = None,
        priority: ReviewPriority | None = None,
    ) -> ReviewRequest:
        """File (or reopen) a review request and return the stored row."""
        request_id = review_id_for(reason, entity_id)
        request = ReviewRequest(
            id=request_id,
            entity_kind=entity_kind,  # type: ignore[arg-type]
            entity_id=entity_id,
            reason=reason,
            priority=priority or _DEFAULT_PRIORITY.get(reason, "NORMAL"),
            sla_hours=self._sla_hours,
            detail=detail,
        )
        if await self._store.add_review_request(request):
            logger.warning(
                "Review requested: %s %s=%s (%s)", reason, entity_kind, entity_id, detail or "",
                extra={"data": {"review_id": request_id, "priority": request.priority}},
            )
            await self._audit.record(
                "REVIEW_REQUESTED", entity_kind, entity_id, reason=reason, review_id=request_id
            )
            return request

        existing = await self._store.get_review_request(request_id)
        if existing is None:
            raise NotFoundError("review request", request_id)
        if existing.status == "COMPLETED":
            existing = existing.model_copy(
                update={
                    "status": "PENDING",
                    "detail": detail or existing.detail,
                    "completed_at": None,
                    "created_at": utcnow(),
                }
            )
            await self._store.update_review_request(existing)
            logger.warning("Review reopened: %s %s=%s", reason, entity_kind, entity_id)
        return existing

    async def complete(self, request_id: str, note: str | None = None) -> ReviewRequest:
        request = await self._store.get_review_request(request_id)
        if request is None:
            raise NotFoundError("review request", request_id)
        done = request.model_copy(
            update={"status": "COMPLETED", "resolution_note": note, "completed_at": utcnow()}
        )
        await self._store.update_review_request(done)
        await self._audit.record(
            "REVIEW_COMPLETED", request.entity_kind, request.entity_id,
            review_id=request_id, note=note,
        )
        return done

    async def complete_for(self, reason: ReviewReason, entity_id: str, note: str | None = None) -> None:
        """Close the request for an entity if one is pending."""
        request = await self._store.get_review_request(review_id_for(reason, entity_id))
        if request is not None and request.status == "PENDING":
            await self.complete(request.id, note)

    async def pending(self) -> list[ReviewRequest]:
        return await self._store.list_review_requests("PENDING")

    async def overdue(self, now: datetime | None = None) -> list[ReviewRequest]:
        """Pending requests past their SLA."""
        now = now or utcnow()
        return [
            r for r in await self.pending()
            if r.created_at + timedelta(hours=r.sla_hours) < now
        ]
