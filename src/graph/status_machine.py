# src/graph/status_machine.py — v1
"""Graph status of published rules: PENDING -> CURRENT | STALE.

Publication marks a rule PENDING and schedules a recompute. A recompute
rebuilds the rule's outgoing edges under the rule lock and commits edges
plus status in one store transaction. Any failure leaves the rule STALE
with graph_error set, so the gateway refuses to evaluate it. Staleness is
transitive: a rule that depends on a STALE rule is STALE too, and a rule
whose dependency is still PENDING stays PENDING until that dependency
settles and re-enqueues it. Cycles are terminal until a human intervenes:
every rule on the cycle goes STALE and a GRAPH_CYCLE review request is
filed.

Every write of graph_status happens under the rule's lock, so marking a
rule PENDING can never be overwritten by a recompute that started before
its inputs changed.
"""

from __future__ import annotations

import logging
from typing import Iterable

from regtruth.arbiter.review_queue import ReviewQueue
from regtruth.core.errors import (
    DependencyNotCurrent,
    GraphCycleDetected,
    MissingDependency,
    NotFoundError,
)
from regtruth.core.models import GraphEdge, GraphStatus, Rule
from regtruth.graph.cycle_detection import candidate_edges, find_cycle
from regtruth.graph.edge_builder import EdgeBuilder
from regtruth.logging.context import log_context
from regtruth.pipeline.locks import KeyedLock
from regtruth.pipeline.work_queue import WorkQueue
from regtruth.storage.base_store import BaseStore
from regtruth.tracking.audit_log import AuditLog

logger = logging.getLogger(__name__)


def _describe(error: Exception) -> str:
    return f"{type(error).__name__}: {error}"


class GraphStatusMachine:
    """Owns graph_status transitions and the edge table."""

    def __init__(
        self,
        store: BaseStore,
        queue: WorkQueue,
        reviews: ReviewQueue | None = None,
        audit: AuditLog | None = None,
        rule_locks: KeyedLock | None = None,
        edge_builder: EdgeBuilder | None = None,
    ) -> None:
        self._store = store
        self._queue = queue
        self._audit = audit or AuditLog(store)
        self._reviews = reviews or ReviewQueue(store, audit=self._audit)
        self._locks = rule_locks or KeyedLock("rule")
        self._builder = edge_builder or EdgeBuilder(store)

    @property
    def edge_builder(self) -> EdgeBuilder:
        return self._builder

    async def on_publish(self, rule: Rule) -> None:
        """Ensure PENDING and schedule a recompute."""
        async with self._locks.hold(rule.id):
            current = await self._store.get_rule(rule.id) or rule
            if current.graph_status != "PENDING":
                await self._store.set_graph_status(rule.id, "PENDING")
        await self._queue.enqueue("graph", rule.id)
        logger.info("Graph recompute scheduled for %s", rule.id)

    async def recompute(self, rule_id: str) -> Rule | None:
        """Rebuild edges for one rule and set its graph status.

        Returns:
            The updated rule (CURRENT, or PENDING while a dependency is
            still pending), or None if the rule is no longer published.

        Raises:
            GraphCycleDetected: Edges would close a cycle (rules left STALE).
            MissingDependency: A referenced topic has no published rule.
            DependencyNotCurrent: A dependency is STALE (rule left STALE).
            NotFoundError: The rule does not exist.
        """
        with log_context(rule_id=rule_id):
            rule = await self._store.get_rule(rule_id)
            if rule is None:
                raise NotFoundError("rule", rule_id)

            failure: Exception | None = None
            pending: list[str] = []
            async with self._locks.hold(rule_id):
                rule = await self._store.get_rule(rule_id) or rule
                if rule.status != "PUBLISHED":
                    logger.info("Skipping recompute of %s (status %s)", rule_id, rule.status)
                    return None

                previous_edges = await self._store.list_edges(from_rule_id=rule_id)
                previous_status, previous_error = rule.graph_status, rule.graph_error
                edges: list[GraphEdge] = []
                try:
                    edges = await self._builder.build_edges(rule)
                    cycle = find_cycle(
                        candidate_edges(await self._store.list_edges(), rule_id, edges),
                        source=rule_id,
                    )
                    if cycle is not None:
                        raise GraphCycleDetected(rule_id, cycle)
                    stale, pending = await self._unsettled_dependencies(edges)
                    if stale:
                        raise DependencyNotCurrent(rule_id, stale)
                except GraphCycleDetected as e:
                    failure = e
                except DependencyNotCurrent as e:
                    await self._mark_stale(rule, e, edges=edges)
                    failure = e
                except Exception as e:
                    await self._mark_stale(rule, e)
                    failure = e
                else:
                    status: GraphStatus = "PENDING" if pending else "CURRENT"
                    updated = await self._store.commit_graph_result(rule_id, edges, status)

            if isinstance(failure, GraphCycleDetected):
                await self._mark_cycle(rule, failure)
                raise failure
            if failure is not None:
                if _describe(failure) != previous_error:
                    await self.enqueue_dependents(rule.topic_key, exclude=[rule_id])
                raise failure

            if pending:
                logger.info(
                    "Graph recompute for %s waits on %s", rule_id, ", ".join(pending),
                    extra={"data": {"rule_id": rule_id, "pending": pending}},
                )
                return updated

            changed = [e.key for e in edges] != [e.key for e in previous_edges]
            if changed or previous_status != "CURRENT":
                await self._audit.record(
                    "GRAPH_STATUS_CHANGED", "rule", rule_id,
                    previous=previous_status, current="CURRENT", edges=len(edges),
                )
                await self.enqueue_dependents(rule.topic_key, exclude=[rule_id])
                await self.enqueue_successor(rule)
            logger.info("Graph CURRENT for %s (%d edges)", rule_id, len(edges))
            return updated

    async def enqueue_dependents(self, topic_key: str, exclude: Iterable[str] = ()) -> list[str]:
        """Mark PENDING and re-enqueue every published rule that cites topic_key.

        graph_error is carried over, so a recompute can tell whether its
        failure is new.
        """
        skip = set(exclude)
        scheduled: list[str] = []
        for rule in await self._store.list_rules(status="PUBLISHED"):
            if rule.id in skip or rule.graph_status is None:
                continue
            if topic_key not in await self._builder.referenced_topics(rule):
                continue
            if await self._reschedule(rule.id):
                scheduled.append(rule.id)
        if scheduled:
            logger.info("Re-enqueued %d dependents of %s", len(scheduled), topic_key)
        return scheduled

    async def enqueue_successor(self, rule: Rule) -> str | None:
        """Re-enqueue the next rule of the topic if its SUPERSEDES edge skips rule."""
        successor = await self._builder.successor(rule)
        if successor is None or successor.graph_status is None:
            return None
        edges = await self._store.list_edges(from_rule_id=successor.id)
        if any(e.relation == "SUPERSEDES" and e.to_rule_id == rule.id for e in edges):
            return None
        if not await self._reschedule(successor.id):
            return None
        logger.info("Re-enqueued %s to supersede %s", successor.id, rule.id)
        return successor.id

    async def _reschedule(self, rule_id: str) -> bool:
        """Mark PENDING under the rule lock and enqueue a recompute."""
        async with self._locks.hold(rule_id):
            current = await self._store.get_rule(rule_id)
            if current is None or current.status != "PUBLISHED":
                return False
            if current.graph_status != "PENDING":
                await self._store.set_graph_status(rule_id, "PENDING", current.graph_error)
            await self._queue.enqueue("graph", rule_id)
        return True

    async def invalidate(self, rule: Rule, reason: str) -> None:
        """Drop a rule from the graph (e.g. after revocation).

        Dependents and the rule that superseded it are re-enqueued.
        """
        async with self._locks.hold(rule.id):
            await self._store.commit_graph_result(rule.id, [], "STALE", reason)
        await self.enqueue_dependents(rule.topic_key, exclude=[rule.id])
        for edge in await self._store.list_edges(to_rule_id=rule.id):
            if edge.relation == "SUPERSEDES":
                await self._reschedule(edge.from_rule_id)

    # --- Failure handling ---

    async def _unsettled_dependencies(self, edges: list[GraphEdge]) -> tuple[list[str], list[str]]:
        """DEPENDS_ON targets that are STALE, and those still PENDING."""
        stale: list[str] = []
        pending: list[str] = []
        for edge in edges:
            if edge.relation != "DEPENDS_ON":
                continue
            target = await self._store.get_rule(edge.to_rule_id)
            if target is None or target.graph_status == "STALE":
                stale.append(edge.to_rule_id)
            elif target.graph_status == "PENDING":
                pending.append(edge.to_rule_id)
        return stale, pending

    async def _mark_stale(
        self, rule: Rule, error: Exception, edges: list[GraphEdge] | None = None
    ) -> None:
        """Set STALE. Edges are replaced only when they were built successfully."""
        message = _describe(error)
        if edges is None:
            await self._store.set_graph_status(rule.id, "STALE", message)
        else:
            await self._store.commit_graph_result(rule.id, edges, "STALE", message)
        expected = isinstance(error, (MissingDependency, DependencyNotCurrent))
        logger.log(
            logging.WARNING if expected else logging.ERROR,
            "Graph STALE for %s: %s", rule.id, message,
            extra={"data": {"rule_id": rule.id, "error_type": type(error).__name__}},
        )
        await self._audit.record(
            "GRAPH_STATUS_CHANGED", "rule", rule.id,
            previous=rule.graph_status, current="STALE", error=message,
        )

    async def _mark_cycle(self, rule: Rule, error: GraphCycleDetected) -> None:
        message = str(error)
        members = sorted(set(error.cycle))
        async with self._locks.hold_many(members):
            for member_id in members:
                await self._store.set_graph_status(member_id, "STALE", message)
        logger.error(
            "Graph cycle: %s", " -> ".join(error.cycle),
            extra={"data": {"rule_id": rule.id, "cycle": error.cycle}},
        )
        await self._audit.record("GRAPH_CYCLE_DETECTED", "rule", rule.id, cycle=error.cycle)
        await self._reviews.file("rule", rule.id, "GRAPH_CYCLE", detail=message)
        for member_id in members:
            member = await self._store.get_rule(member_id)
            if member is not None:
                await self.enqueue_dependents(member.topic_key, exclude=members)
