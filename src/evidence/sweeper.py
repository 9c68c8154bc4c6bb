# src/evidence/sweeper.py — v1
"""Periodic staleness sweep over stored evidence.

A sweep re-evaluates every live record against the staleness policy and
persists status changes. It then files an EVIDENCE_EXPIRED review for each
published rule whose cited evidence has all EXPIRED. The rule is flagged
rather than revoked; a reviewer decides. Stale sources are reported as
re-fetch requests, newest record per URL, strongest authority first.
UNAVAILABLE sources are left to the verifier's own retries.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime

from regtruth.arbiter.review_queue import ReviewQueue, review_id_for
from regtruth.core.models import AuthorityTier, Evidence, Rule, StalenessStatus, utcnow
from regtruth.evidence.evidence_store import EvidenceStore
from regtruth.storage.base_store import BaseStore
from regtruth.tracking.audit_log import AuditLog

logger = logging.getLogger(__name__)

_REFETCH_STATUSES: frozenset[str] = frozenset({"STALE", "EXPIRED"})
_TIER_ORDER: dict[str, int] = {"LAW": 0, "REGULATION": 1, "GUIDANCE": 2, "PRACTICE": 3}


@dataclass(frozen=True)
class RefetchRequest:
    """A source that must be fetched again before its evidence is relied on."""

    source_url: str
    evidence_id: str
    staleness_status: StalenessStatus
    authority_tier: AuthorityTier


@dataclass
class SweepReport:
    checked: int = 0
    updated: int = 0
    statuses: Counter[str] = field(default_factory=Counter)
    flagged_rules: list[str] = field(default_factory=list)
    refetch: list[RefetchRequest] = field(default_factory=list)


class StalenessSweeper:
    """Applies staleness verdicts to evidence and the rules resting on it."""

    def __init__(
        self,
        store: BaseStore,
        evidence: EvidenceStore,
        reviews: ReviewQueue | None = None,
        audit: AuditLog | None = None,
        refetch_limit: int = 50,
    ) -> None:
        self._store = store
        self._evidence = evidence
        self._audit = audit or AuditLog(store)
        self._reviews = reviews or ReviewQueue(store, audit=self._audit)
        self._refetch_limit = refetch_limit

    async def sweep(self, now: datetime | None = None) -> SweepReport:
        """Run one full pass: persist statuses, flag rules, list re-fetches."""
        now = now or utcnow()
        report = SweepReport()
        for evidence in await self._store.list_evidence():
            if evidence.is_deleted:
                continue
            report.checked += 1
            result = self._evidence.check_staleness(evidence, now=now)
            report.statuses[result.status] += 1
            if result.status == evidence.staleness_status:
                continue
            await self._evidence.update_evidence(evidence.id, staleness_status=result.status)
            report.updated += 1
            logger.info(
                "Evidence %s is now %s (%s)", evidence.id, result.status, result.reason,
                extra={"data": {"evidence_id": evidence.id, "previous": evidence.staleness_status}},
            )

        report.flagged_rules = await self.flag_expired_rules()
        report.refetch = await self.refetch_candidates()
        logger.info(
            "Staleness sweep: %d checked, %d updated, %d rules flagged, %d to re-fetch",
            report.checked, report.updated, len(report.flagged_rules), len(report.refetch),
            extra={"data": {"statuses": dict(report.statuses)}},
        )
        return report

    async def flag_expired_rules(self) -> list[str]:
        """File a review for each published rule whose evidence has all EXPIRED.

        Rules without pointers (legacy imports) and rules whose review is
        still pending are skipped.
        """
        flagged: list[str] = []
        for rule in await self._store.list_rules(status="PUBLISHED"):
            evidence = await self._cited_evidence(rule)
            if not evidence or any(e.staleness_status != "EXPIRED" for e in evidence):
                continue
            existing = await self._store.get_review_request(
                review_id_for("EVIDENCE_EXPIRED", rule.id)
            )
            if existing is not None and existing.status == "PENDING":
                continue
            evidence_ids = sorted({e.id for e in evidence})
            await self._reviews.file(
                "rule", rule.id, "EVIDENCE_EXPIRED",
                detail=f"all cited evidence expired: {', '.join(evidence_ids)}",
            )
            await self._audit.record(
                "RULE_EVIDENCE_EXPIRED", "rule", rule.id, evidence_ids=evidence_ids
            )
            flagged.append(rule.id)
        return flagged

    async def refetch_candidates(self, limit: int | None = None) -> list[RefetchRequest]:
        """Newest live record per URL whose status calls for a re-fetch."""
        latest: dict[str, Evidence] = {}
        for evidence in await self._store.list_evidence():
            if evidence.is_deleted:
                continue
            known = latest.get(evidence.source_url)
            if known is None or evidence.fetched_at >= known.fetched_at:
                latest[evidence.source_url] = evidence

        due = [e for e in latest.values() if e.staleness_status in _REFETCH_STATUSES]
        due.sort(
            key=lambda e: (
                _TIER_ORDER.get(e.authority_tier, len(_TIER_ORDER)),
                e.last_verified_at or e.fetched_at,
            )
        )
        limit = self._refetch_limit if limit is None else limit
        return [
            RefetchRequest(e.source_url, e.id, e.staleness_status, e.authority_tier)
            for e in due[:limit]
        ]

    async def _cited_evidence(self, rule: Rule) -> list[Evidence]:
        cited: dict[str, Evidence] = {}
        for pointer_id in rule.pointer_ids:
            pointer = await self._store.get_pointer(pointer_id)
            if pointer is None or pointer.evidence_id in cited:
                continue
            evidence = await self._store.get_evidence(pointer.evidence_id)
            if evidence is not None:
                cited[evidence.id] = evidence
        return list(cited.values())
