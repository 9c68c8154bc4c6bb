# src/api/facade.py — v1
"""Public API facade: single entry point wiring every component.

Usage:
    from regtruth.api.facade import RegTruthFacade
    facade = RegTruthFacade.create(settings)
    result = await facade.ingest(url, raw_bytes, metadata=meta)
    await facade.process()
    answer = await facade.answer("VAT_RATE", date.today())
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

from regtruth.api.models import IngestResult, ProcessSummary
from regtruth.arbiter.arbiter import ConflictArbiter
from regtruth.arbiter.authority import AuthorityScorer
from regtruth.arbiter.conflict_detector import ConflictDetector
from regtruth.arbiter.review_queue import ReviewQueue
from regtruth.composer.dsl import PredicateEvaluator
from regtruth.composer.rule_composer import RuleComposer
from regtruth.composer.topics import TopicRegistry, default_topic_registry
from regtruth.config.authority import load_authority_mapping
from regtruth.config.settings import Settings
from regtruth.core.errors import NotFoundError
from regtruth.core.models import (
    AuditEvent,
    ChangeSignal,
    Evidence,
    Resolution,
    ReviewRequest,
    Rule,
    SourceMetadata,
    WorkItem,
)
from regtruth.evidence.evidence_store import EvidenceStore
from regtruth.evidence.fingerprint import content_digest, make_evidence_id
from regtruth.evidence.staleness import StalenessPolicy
from regtruth.evidence.sweeper import StalenessSweeper, SweepReport
from regtruth.extraction.pointer_extractor import PointerExtractor
from regtruth.gateway.answer import AnswerGateway
from regtruth.gateway.models import AnswerResult, ProvenanceChain
from regtruth.gateway.provenance import provenance
from regtruth.graph.status_machine import GraphStatusMachine
from regtruth.llm.base_client import BaseExtractionClient
from regtruth.llm.client_factory import create_extraction_client
from regtruth.pipeline.locks import KeyedLock
from regtruth.pipeline.orchestrator import PipelineOrchestrator
from regtruth.pipeline.work_queue import WorkQueue
from regtruth.rules.lifecycle import RuleLifecycle
from regtruth.storage.base_store import BaseStore
from regtruth.storage.store_factory import create_store
from regtruth.tracking.audit_log import AuditLog
from regtruth.tracking.call_logger import CallLogger

logger = logging.getLogger(__name__)


class RegTruthFacade:
    """Async API over the evidence-to-rule pipeline."""

    def __init__(
        self,
        settings: Settings,
        store: BaseStore,
        client: BaseExtractionClient,
        topics: TopicRegistry,
    ) -> None:
        self.settings = settings
        self.store = store
        self.topics = topics
        self.audit = AuditLog(store)
        self.reviews = ReviewQueue(store, settings.review_sla_hours, audit=self.audit)
        self.queue = WorkQueue.from_settings(store, settings)
        self.call_logger = CallLogger()

        mapping = load_authority_mapping(settings.authority_mapping_path)
        rule_locks = KeyedLock("rule")
        self.evidence = EvidenceStore(
            store, mapping, StalenessPolicy.from_settings(settings), audit=self.audit
        )
        self.sweeper = StalenessSweeper(
            store,
            self.evidence,
            reviews=self.reviews,
            audit=self.audit,
            refetch_limit=settings.staleness_refetch_limit,
        )
        self.graph = GraphStatusMachine(
            store, self.queue, reviews=self.reviews, audit=self.audit, rule_locks=rule_locks
        )
        self.lifecycle = RuleLifecycle(
            store,
            graph=self.graph,
            reviews=self.reviews,
            audit=self.audit,
            rule_locks=rule_locks,
            high_risk_value_types=settings.high_risk_value_types_list,
        )
        self.arbiter = ConflictArbiter(
            store,
            scorer=AuthorityScorer.from_settings(settings, mapping),
            detector=ConflictDetector(settings.conflict_tolerances),
            reviews=self.reviews,
            lifecycle=self.lifecycle,
            audit=self.audit,
        )
        self.extractor = PointerExtractor(client, topics, settings, call_logger=self.call_logger)
        self.composer = RuleComposer.from_settings(topics, settings)
        self.gateway = AnswerGateway(store, PredicateEvaluator.from_settings(settings), self.audit)
        self.orchestrator = PipelineOrchestrator(
            settings,
            store,
            self.queue,
            topics,
            self.extractor,
            self.composer,
            self.arbiter,
            self.lifecycle,
            self.graph,
            self.reviews,
        )

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        store: BaseStore | None = None,
        client: BaseExtractionClient | None = None,
        topics: TopicRegistry | None = None,
    ) -> RegTruthFacade:
        """Build a facade from settings, creating any collaborator not given."""
        settings = settings or Settings()
        if topics is None:
            topics = (
                TopicRegistry.from_yaml(settings.topics_path)
                if settings.topics_path is not None
                else default_topic_registry()
            )
        return cls(
            settings,
            store or create_store(settings),
            client or create_extraction_client(settings.extraction_provider, settings),
            topics,
        )

    async def close(self) -> None:
        await self.store.close()

    # === Evidence ===

    async def ingest(
        self,
        url: str,
        raw_bytes: bytes,
        content_type_hint: str | None = None,
        change_signal: ChangeSignal | None = None,
        metadata: SourceMetadata | None = None,
    ) -> IngestResult:
        """Store a fetched document and schedule extraction if it is new."""
        known = await self.store.get_evidence(make_evidence_id(url, content_digest(raw_bytes)))
        evidence_id = await self.evidence.submit_fetched_document(
            url, raw_bytes, content_type_hint, change_signal, metadata
        )
        evidence = await self.evidence.get(evidence_id)
        scheduled = False
        if known is None:
            scheduled = await self.orchestrator.submit(evidence_id)
        return IngestResult(
            evidence_id=evidence_id,
            source_url=url,
            created=known is None,
            authority_tier=evidence.authority_tier,
            content_class=evidence.content_class,
            scheduled=scheduled,
        )

    async def verify_source(
        self, evidence_id: str, ok: bool, change_signal: ChangeSignal | None = None
    ) -> Evidence:
        return await self.evidence.record_verification(evidence_id, ok, change_signal)

    async def tombstone(self, evidence_id: str, reason: str) -> Evidence:
        return await self.evidence.tombstone(evidence_id, reason)

    async def sweep_staleness(self) -> SweepReport:
        """Persist staleness verdicts, flag rules on expired evidence, list re-fetches."""
        return await self.sweeper.sweep()

    # === Pipeline ===

    async def process(self, timeout_s: float | None = None) -> ProcessSummary:
        """Drain every stage and report what is left for humans."""
        stats = await self.orchestrator.drain(timeout_s)
        return ProcessSummary(
            processed=stats.processed,
            failed=stats.failed,
            dead_letters=len(await self.queue.dead_letters()),
            pending_reviews=len(await self.reviews.pending()),
            published_rules=len(await self.store.list_rules(status="PUBLISHED")),
        )

    async def dead_letters(self) -> list[WorkItem]:
        return await self.queue.dead_letters()

    async def requeue(self, work_item_id: str) -> WorkItem:
        return await self.queue.requeue(work_item_id)

    # === Rules & reviews ===

    async def rules(self, topic_key: str | None = None) -> list[Rule]:
        return await self.store.list_rules(topic_key)

    async def import_legacy_rule(self, rule: Rule) -> Rule:
        return await self.lifecycle.import_legacy(rule)

    async def revoke_rule(self, rule_id: str, reason: str) -> Rule:
        return await self.lifecycle.revoke(rule_id, reason)

    async def pending_reviews(self) -> list[ReviewRequest]:
        return await self.reviews.pending()

    async def decide_conflict(
        self, conflict_id: str, winner_id: str, reviewer: str, note: str | None = None
    ) -> Resolution:
        """Record a human decision and re-run composition for the topic."""
        conflict = await self.store.get_conflict(conflict_id)
        if conflict is None:
            raise NotFoundError("conflict", conflict_id)
        resolution = await self.arbiter.record_human_decision(conflict_id, winner_id, reviewer, note)
        await self.queue.enqueue("compose", conflict.topic_key)
        return resolution

    # === Queries ===

    async def answer(
        self, topic_key: str, as_of: date, context: dict[str, Any] | None = None
    ) -> AnswerResult:
        return await self.gateway.answer(topic_key, as_of, context)

    async def provenance(self, rule_id: str) -> ProvenanceChain:
        return await provenance(self.store, rule_id)

    async def audit_history(self, entity_id: str | None = None) -> list[AuditEvent]:
        return await self.audit.history(entity_id)
