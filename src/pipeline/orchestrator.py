# src/pipeline/orchestrator.py — v1
"""Stage handlers of the evidence-to-rule pipeline.

    extract  (evidence id)  -> pointers, then one compose item per topic
    compose  (topic key)    -> pointer arbitration, draft, rule arbitration, publish
    graph    (rule id)      -> edge rebuild and graph status

Each stage is driven by the durable work queue; handlers are idempotent so
a redelivered item converges to the same state.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from regtruth.core.errors import (
    DependencyNotCurrent,
    ExtractionFailure,
    GraphCycleDetected,
    MissingDependency,
)
from regtruth.core.models import Rule, SourcePointer, WorkItem
from regtruth.logging.context import log_context
from regtruth.pipeline.locks import KeyedLock
from regtruth.pipeline.worker_pool import PoolStats, WorkerPool

if TYPE_CHECKING:
    from regtruth.arbiter.arbiter import ConflictArbiter
    from regtruth.arbiter.review_queue import ReviewQueue
    from regtruth.composer.rule_composer import RuleComposer
    from regtruth.composer.topics import TopicRegistry
    from regtruth.config.settings import Settings
    from regtruth.extraction.pointer_extractor import PointerExtractor
    from regtruth.graph.status_machine import GraphStatusMachine
    from regtruth.pipeline.work_queue import WorkQueue
    from regtruth.rules.lifecycle import RuleLifecycle
    from regtruth.storage.base_store import BaseStore

logger = logging.getLogger(__name__)


class PipelineOrchestrator:
    """Wires the stage handlers to the queue and the worker pool.

    Args:
        settings: Application settings (worker counts, poll interval).
        store: Persistence backend.
        queue: Durable work queue.
        topics: Topic schemas to extract and compose.
        extractor: Pointer extractor (extraction service boundary).
        composer: Rule composer.
        arbiter: Conflict arbiter.
        lifecycle: Rule status transitions and publication gate.
        graph: Graph status machine.
        reviews: Human review queue.
    """

    def __init__(
        self,
        settings: Settings,
        store: BaseStore,
        queue: WorkQueue,
        topics: TopicRegistry,
        extractor: PointerExtractor,
        composer: RuleComposer,
        arbiter: ConflictArbiter,
        lifecycle: RuleLifecycle,
        graph: GraphStatusMachine,
        reviews: ReviewQueue,
    ) -> None:
        self._settings = settings
        self._store = store
        self._queue = queue
        self._topics = topics
        self._extractor = extractor
        self._composer = composer
        self._arbiter = arbiter
        self._lifecycle = lifecycle
        self._graph = graph
        self._reviews = reviews
        self._topic_locks = KeyedLock("topic")

    def build_pool(self) -> WorkerPool:
        return WorkerPool(
            self._queue,
            handlers={
                "extract": self.handle_extract,
                "compose": self.handle_compose,
                "graph": self.handle_graph,
            },
            workers_per_stage={
                "extract": self._settings.extract_workers,
                "compose": self._settings.compose_workers,
                "graph": self._settings.graph_workers,
            },
            poll_interval_s=self._settings.queue_poll_interval_s,
        )

    async def submit(self, evidence_id: str) -> bool:
        """Schedule extraction for one evidence record."""
        return await self._queue.enqueue("extract", evidence_id)

    async def drain(self, timeout_s: float | None = None) -> PoolStats:
        """Process every outstanding item of every stage."""
        stats = await self.build_pool().drain(timeout_s)
        logger.info(
            "Pipeline drained: processed=%s failed=%s", stats.processed, stats.failed,
            extra={"data": {"processed": stats.processed, "failed": stats.failed}},
        )
        return stats

    # ------------------------------------------------------------------
    # Stage: extract
    # ------------------------------------------------------------------

    async def handle_extract(self, item: WorkItem) -> None:
        evidence_id = item.payload_id
        with log_context(evidence_id=evidence_id):
            evidence = await self._store.get_evidence(evidence_id)
            if evidence is None or evidence.is_deleted:
                logger.info("Nothing to extract for %s", evidence_id)
                return
            try:
                pointers = await self._extractor.extract(evidence)
            except ExtractionFailure as e:
                await self._reviews.file("evidence", evidence_id, "EXTRACTION_PARKED", detail=str(e))
                raise

            inserted = await self._store.add_pointers(pointers)
            topics = sorted({p.topic_key for p in pointers if p.is_verified})
            for topic_key in topics:
                await self._queue.enqueue("compose", topic_key)
            logger.info(
                "Stored %d new pointers from %s; composing %s", inserted, evidence_id, topics or "none"
            )

    # ------------------------------------------------------------------
    # Stage: compose
    # ------------------------------------------------------------------

    async def handle_compose(self, item: WorkItem) -> None:
        topic_key = item.payload_id
        async with self._topic_locks.hold(topic_key):
            await self._compose_topic(topic_key)

    async def _compose_topic(self, topic_key: str) -> None:
        schema = self._topics.get(topic_key)

        # 1. Arbitrate between eligible pointers of the topic
        pointers = await self._eligible_pointers(topic_key)
        comparable = [p for p in pointers if p.value_type != "reference"]
        for conflict in await self._arbiter.detect_conflicts(comparable):
            if conflict.status == "OPEN":
                await self._arbiter.resolve(conflict)
        pointers = await self._eligible_pointers(topic_key)

        # 2. Draft, unless the same content was drafted before
        existing = await self._store.list_rules(topic_key)
        tiers = await self._evidence_tiers(pointers)
        version = await self._lifecycle.next_version(topic_key)
        draft = self._composer.compose(schema, pointers, version=version, evidence_tiers=tiers)
        previous = max(
            (r for r in existing if _same_content(r, draft)),
            key=lambda r: r.version,
            default=None,
        )
        if previous is not None:
            if previous.status != "REVIEW":
                logger.info("Topic %s unchanged since %s (%s)", topic_key, previous.id, previous.status)
                return
            rule = previous
        else:
            await self._retire_unpublished(existing, draft.id)
            await self._lifecycle.save_draft(draft)
            if not draft.composition_complete:
                return
            rule = await self._lifecycle.submit_for_review(draft.id)

        with log_context(rule_id=rule.id):
            await self._arbitrate_and_publish(rule)

    async def _arbitrate_and_publish(self, rule: Rule) -> None:
        blocking = await self._arbiter.blocking_conflicts(rule.pointer_ids)
        if blocking:
            logger.warning(
                "%s held in REVIEW by %d unresolved conflicts", rule.id, len(blocking),
                extra={"data": {"conflicts": [c.id for c in blocking]}},
            )
            return

        # 3. Arbitrate against published rules that start on the same date
        published = [
            r for r in await self._store.list_rules(rule.topic_key, "PUBLISHED") if r.id != rule.id
        ]
        standing = await self._revoke_undermined(published, rule.id)
        rivals = [r for r in standing if r.effective_from == rule.effective_from]
        for conflict in await self._arbiter.detect_conflicts([rule, *rivals]):
            if conflict.status == "OPEN":
                await self._arbiter.resolve(conflict)
        current = await self._store.get_rule(rule.id)
        if current is None or current.status != "REVIEW":
            return
        if await self._arbiter.blocking_conflicts([rule.id]):
            logger.warning("%s held in REVIEW by an escalated rule conflict", rule.id)
            return

        # 4. Publish through the provenance gate
        await self._lifecycle.mark_arbitrated(rule.id)
        await self._lifecycle.publish(rule.id)

    async def _revoke_undermined(self, rivals: list[Rule], replacement_id: str) -> list[Rule]:
        """Revoke published rules whose own pointers have since lost a conflict."""
        standing: list[Rule] = []
        for rival in rivals:
            lost = None
            for pointer_id in rival.pointer_ids:
                pointer = await self._store.get_pointer(pointer_id)
                if pointer is not None and pointer.conflict_status is not None:
                    lost = pointer
                    break
            if lost is None:
                standing.append(rival)
                continue
            await self._lifecycle.revoke(
                rival.id,
                f"pointer {lost.id} lost conflict {lost.conflict_id}; superseded by {replacement_id}",
            )
        return standing

    async def _retire_unpublished(self, existing: list[Rule], replacement_id: str) -> None:
        """Reject older drafts that a new draft replaces."""
        for r in existing:
            if r.status in ("DRAFT", "REVIEW", "ARBITRATED"):
                await self._lifecycle.reject(r.id, f"superseded by {replacement_id}")

    async def _eligible_pointers(self, topic_key: str) -> list[SourcePointer]:
        pointers = await self._store.list_pointers(topic_key=topic_key)
        usable = []
        for p in self._composer.eligible(pointers):
            evidence = await self._store.get_evidence(p.evidence_id)
            if evidence is not None and not evidence.is_deleted:
                usable.append(p)
        return usable

    async def _evidence_tiers(self, pointers: list[SourcePointer]) -> dict[str, str]:
        tiers: dict[str, str] = {}
        for evidence_id in {p.evidence_id for p in pointers}:
            evidence = await self._store.get_evidence(evidence_id)
            if evidence is not None:
                tiers[evidence_id] = evidence.authority_tier
        return tiers

    # ------------------------------------------------------------------
    # Stage: graph
    # ------------------------------------------------------------------

    async def handle_graph(self, item: WorkItem) -> None:
        """Recompute one rule. Cycles, missing dependencies and stale
        dependencies are final for this run: the rule is STALE and is
        re-enqueued when its inputs change."""
        try:
            await self._graph.recompute(item.payload_id)
        except (GraphCycleDetected, MissingDependency, DependencyNotCurrent) as e:
            logger.warning("Graph recompute for %s left STALE: %s", item.payload_id, e)


def _same_content(a: Rule, b: Rule) -> bool:
    return (
        a.pointer_ids == b.pointer_ids
        and a.value == b.value
        and a.effective_from == b.effective_from
        and a.effective_to == b.effective_to
        and a.applies_when == b.applies_when
    )
