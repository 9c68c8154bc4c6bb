# tests/unit/graph/test_unit_status_machine.py — v1
"""Tests for graph/edge_builder.py and graph/status_machine.py."""

from __future__ import annotations

import asyncio
from datetime import date

import pytest

from regtruth.arbiter.review_queue import review_id_for
from regtruth.core.errors import (
    DependencyNotCurrent,
    GraphCycleDetected,
    MissingDependency,
    NotFoundError,
)
from regtruth.graph.edge_builder import EdgeBuilder
from regtruth.graph.status_machine import GraphStatusMachine
from regtruth.pipeline.work_queue import WorkQueue

RATE_ID = "rule_vat_rate_v1"
REDUCED_ID = "rule_vat_reduced_rate_v1"


@pytest.fixture
def machine(store) -> GraphStatusMachine:
    return GraphStatusMachine(store, WorkQueue(store))


@pytest.fixture
def seed(store, make_pointer_fn, make_rule_fn):
    """Factory: a published VAT_RATE rule and a published VAT_REDUCED_RATE rule."""

    async def _seed(rate_refs: list[str], reduced_refs: list[str] | None = None, reduced: bool = True):
        pointers = [make_pointer_fn("sp_rate", references=rate_refs)]
        rules = [make_rule_fn(RATE_ID, pointer_ids=["sp_rate"], status="PUBLISHED", graph_status="PENDING")]
        if reduced:
            pointers.append(make_pointer_fn(
                "sp_reduced", topic_key="VAT_REDUCED_RATE", value="7%", references=reduced_refs or [],
            ))
            rules.append(make_rule_fn(
                REDUCED_ID, topic_key="VAT_REDUCED_RATE", value="7%", pointer_ids=["sp_reduced"],
                status="PUBLISHED", graph_status="PENDING",
            ))
        await store.add_pointers(pointers)
        for rule in rules:
            await store.put_rule(rule)

    return _seed


class TestEdgeBuilder:
    @pytest.mark.asyncio
    async def test_depends_on_latest_published(self, store, seed, make_rule_fn):
        await seed(["VAT_REDUCED_RATE"])
        await store.put_rule(make_rule_fn(
            "rule_vat_reduced_rate_v2", topic_key="VAT_REDUCED_RATE", version=2, value="8%",
            status="PUBLISHED",
        ))
        edges = await EdgeBuilder(store).build_edges(await store.get_rule(RATE_ID))
        assert [(e.to_rule_id, e.relation) for e in edges] == [("rule_vat_reduced_rate_v2", "DEPENDS_ON")]

    @pytest.mark.asyncio
    async def test_supersedes_previous_version(self, store, seed, make_rule_fn):
        await seed([], reduced=False)
        v2 = make_rule_fn("rule_vat_rate_v2", version=2, status="PUBLISHED", pointer_ids=["sp_rate"])
        await store.put_rule(v2)
        edges = await EdgeBuilder(store).build_edges(v2)
        assert [(e.to_rule_id, e.relation) for e in edges] == [(RATE_ID, "SUPERSEDES")]

    @pytest.mark.asyncio
    async def test_missing_dependency(self, store, seed):
        await seed(["VAT_REDUCED_RATE"], reduced=False)
        with pytest.raises(MissingDependency):
            await EdgeBuilder(store).build_edges(await store.get_rule(RATE_ID))

    @pytest.mark.asyncio
    async def test_self_reference_ignored(self, store, seed):
        await seed(["VAT_RATE"], reduced=False)
        assert await EdgeBuilder(store).build_edges(await store.get_rule(RATE_ID)) == []

    @pytest.mark.asyncio
    async def test_backdated_version_slots_into_chain(self, store, make_rule_fn):
        v1 = make_rule_fn(effective_from=date(2026, 1, 1), status="PUBLISHED")
        v2 = make_rule_fn("rule_vat_rate_v2", version=2, effective_from=date(2025, 1, 1),
                          status="PUBLISHED")
        for rule in (v1, v2):
            await store.put_rule(rule)
        builder = EdgeBuilder(store)
        assert [(e.to_rule_id, e.relation) for e in await builder.build_edges(v1)] == [
            ("rule_vat_rate_v2", "SUPERSEDES")
        ]
        assert await builder.build_edges(v2) == []
        assert (await builder.successor(v2)).id == RATE_ID
        assert await builder.predecessor(v2) is None


class TestRecompute:
    @pytest.mark.asyncio
    async def test_current_with_edges(self, machine, store, seed):
        await seed(["VAT_REDUCED_RATE"])
        await machine.recompute(REDUCED_ID)
        rule = await machine.recompute(RATE_ID)
        assert rule.graph_status == "CURRENT"
        assert rule.graph_error is None
        edges = await store.list_edges(from_rule_id=RATE_ID)
        assert [e.to_rule_id for e in edges] == [REDUCED_ID]

    @pytest.mark.asyncio
    async def test_rebuild_is_idempotent(self, machine, store, seed):
        await seed(["VAT_REDUCED_RATE"])
        await machine.recompute(REDUCED_ID)
        await machine.recompute(RATE_ID)
        before = [e.key for e in await store.list_edges()]
        await machine.recompute(RATE_ID)
        assert [e.key for e in await store.list_edges()] == before
        changes = [e for e in await store.list_audit(RATE_ID) if e.event == "GRAPH_STATUS_CHANGED"]
        assert len(changes) == 1

    @pytest.mark.asyncio
    async def test_missing_dependency_leaves_stale(self, machine, store, seed):
        await seed(["VAT_REDUCED_RATE"], reduced=False)
        with pytest.raises(MissingDependency):
            await machine.recompute(RATE_ID)
        rule = await store.get_rule(RATE_ID)
        assert rule.graph_status == "STALE"
        assert "MissingDependency" in rule.graph_error

    @pytest.mark.asyncio
    async def test_cycle_marks_members_stale(self, machine, store, seed):
        await seed(["VAT_REDUCED_RATE"], ["VAT_RATE"])
        await machine.recompute(RATE_ID)
        with pytest.raises(GraphCycleDetected) as exc_info:
            await machine.recompute(REDUCED_ID)

        assert set(exc_info.value.cycle) == {RATE_ID, REDUCED_ID}
        for rule_id in (RATE_ID, REDUCED_ID):
            assert (await store.get_rule(rule_id)).graph_status == "STALE"
        assert await store.list_edges(from_rule_id=REDUCED_ID) == []
        review = await store.get_review_request(review_id_for("GRAPH_CYCLE", REDUCED_ID))
        assert review.priority == "CRITICAL"

    @pytest.mark.asyncio
    async def test_dependents_rescheduled(self, machine, store, seed):
        await seed(["VAT_REDUCED_RATE"])
        await machine.recompute(RATE_ID)
        await machine.recompute(REDUCED_ID)
        assert (await store.get_rule(RATE_ID)).graph_status == "PENDING"
        assert (await store.get_work(f"graph:{RATE_ID}")).status == "QUEUED"

    @pytest.mark.asyncio
    async def test_waits_on_pending_dependency(self, machine, store, seed):
        await seed(["VAT_REDUCED_RATE"])
        rule = await machine.recompute(RATE_ID)
        assert rule.graph_status == "PENDING"
        assert [e.to_rule_id for e in await store.list_edges(from_rule_id=RATE_ID)] == [REDUCED_ID]
        assert [e for e in await store.list_audit(RATE_ID) if e.event == "GRAPH_STATUS_CHANGED"] == []

        await machine.recompute(REDUCED_ID)
        assert (await store.get_work(f"graph:{RATE_ID}")).status == "QUEUED"
        assert (await machine.recompute(RATE_ID)).graph_status == "CURRENT"

    @pytest.mark.asyncio
    async def test_stale_dependency_leaves_dependent_stale(self, machine, store, seed):
        await seed(["VAT_REDUCED_RATE"])
        await store.set_graph_status(REDUCED_ID, "STALE", "GraphCycleDetected: test")
        with pytest.raises(DependencyNotCurrent) as exc_info:
            await machine.recompute(RATE_ID)

        assert exc_info.value.dependency_ids == [REDUCED_ID]
        rule = await store.get_rule(RATE_ID)
        assert rule.graph_status == "STALE"
        assert "DependencyNotCurrent" in rule.graph_error
        assert [e.to_rule_id for e in await store.list_edges(from_rule_id=RATE_ID)] == [REDUCED_ID]

    @pytest.mark.asyncio
    async def test_staleness_is_transitive(self, machine, store, seed, make_pointer_fn, make_rule_fn):
        await seed(["VAT_REDUCED_RATE"])
        await store.add_pointers([make_pointer_fn(
            "sp_threshold", topic_key="VAT_THRESHOLD", value_type="threshold", value="40000",
            references=["VAT_RATE"],
        )])
        await store.put_rule(make_rule_fn(
            "rule_vat_threshold_v1", topic_key="VAT_THRESHOLD", value_type="threshold",
            value="40000", pointer_ids=["sp_threshold"], status="PUBLISHED", graph_status="CURRENT",
        ))
        await store.set_graph_status(REDUCED_ID, "STALE", "GraphCycleDetected: test")

        with pytest.raises(DependencyNotCurrent):
            await machine.recompute(RATE_ID)
        assert (await store.get_rule("rule_vat_threshold_v1")).graph_status == "PENDING"
        with pytest.raises(DependencyNotCurrent):
            await machine.recompute("rule_vat_threshold_v1")
        assert (await store.get_rule("rule_vat_threshold_v1")).graph_status == "STALE"

    @pytest.mark.asyncio
    async def test_recovers_when_dependency_settles(self, machine, store, seed):
        await seed(["VAT_REDUCED_RATE"])
        await store.set_graph_status(REDUCED_ID, "STALE", "GraphCycleDetected: test")
        with pytest.raises(DependencyNotCurrent):
            await machine.recompute(RATE_ID)

        await machine.recompute(REDUCED_ID)
        rescheduled = await store.get_rule(RATE_ID)
        assert rescheduled.graph_status == "PENDING"
        assert "DependencyNotCurrent" in rescheduled.graph_error
        rule = await machine.recompute(RATE_ID)
        assert rule.graph_status == "CURRENT"
        assert rule.graph_error is None

    @pytest.mark.asyncio
    async def test_repeated_failure_does_not_reschedule(self, machine, store, seed, make_pointer_fn,
                                                        make_rule_fn):
        await seed(["VAT_REDUCED_RATE"], reduced=False)
        await store.add_pointers([make_pointer_fn(
            "sp_threshold", topic_key="VAT_THRESHOLD", value_type="threshold", value="40000",
            references=["VAT_RATE"],
        )])
        await store.put_rule(make_rule_fn(
            "rule_vat_threshold_v1", topic_key="VAT_THRESHOLD", value_type="threshold",
            value="40000", pointer_ids=["sp_threshold"], status="PUBLISHED", graph_status="CURRENT",
        ))
        with pytest.raises(MissingDependency):
            await machine.recompute(RATE_ID)
        item = await store.get_work("graph:rule_vat_threshold_v1")
        assert item.status == "QUEUED"

        await store.set_graph_status("rule_vat_threshold_v1", "CURRENT")
        with pytest.raises(MissingDependency):
            await machine.recompute(RATE_ID)
        assert (await store.get_rule("rule_vat_threshold_v1")).graph_status == "CURRENT"

    @pytest.mark.asyncio
    async def test_unpublished_rule_skipped(self, machine, store, make_rule_fn):
        await store.put_rule(make_rule_fn(status="REVIEW"))
        assert await machine.recompute(RATE_ID) is None

    @pytest.mark.asyncio
    async def test_unknown_rule(self, machine):
        with pytest.raises(NotFoundError):
            await machine.recompute("rule_missing_v1")


class TestPublishAndInvalidate:
    @pytest.mark.asyncio
    async def test_on_publish_enqueues(self, machine, store, make_rule_fn):
        rule = make_rule_fn(status="PUBLISHED", graph_status="CURRENT")
        await store.put_rule(rule)
        await machine.on_publish(rule)
        assert (await store.get_rule(RATE_ID)).graph_status == "PENDING"
        assert (await store.get_work(f"graph:{RATE_ID}")).status == "QUEUED"

    @pytest.mark.asyncio
    async def test_invalidate_drops_edges(self, machine, store, seed):
        await seed(["VAT_REDUCED_RATE"])
        await machine.recompute(REDUCED_ID)
        await machine.recompute(RATE_ID)
        await machine.invalidate(await store.get_rule(RATE_ID), "revoked: test")
        rule = await store.get_rule(RATE_ID)
        assert rule.graph_status == "STALE"
        assert rule.graph_error == "revoked: test"
        assert await store.list_edges(from_rule_id=RATE_ID) == []

    @pytest.mark.asyncio
    async def test_invalidate_reschedules_superseding_rule(self, machine, store, make_rule_fn):
        v1 = make_rule_fn(status="PUBLISHED", graph_status="CURRENT")
        v2 = make_rule_fn("rule_vat_rate_v2", version=2, status="PUBLISHED", graph_status="PENDING")
        for rule in (v1, v2):
            await store.put_rule(rule)
        await machine.recompute("rule_vat_rate_v2")
        await machine.invalidate(v1, "revoked: test")
        assert (await store.get_rule("rule_vat_rate_v2")).graph_status == "PENDING"
        assert (await store.get_work("graph:rule_vat_rate_v2")).status == "QUEUED"

    @pytest.mark.asyncio
    async def test_successor_repointed_after_backdated_publish(self, machine, store, make_rule_fn):
        v1 = make_rule_fn(effective_from=date(2026, 1, 1), status="PUBLISHED", graph_status="CURRENT")
        await store.put_rule(v1)
        await machine.recompute(RATE_ID)
        backdated = make_rule_fn("rule_vat_rate_v2", version=2, effective_from=date(2025, 1, 1),
                                 status="PUBLISHED", graph_status="PENDING")
        await store.put_rule(backdated)

        await machine.recompute("rule_vat_rate_v2")
        assert (await store.get_rule(RATE_ID)).graph_status == "PENDING"
        await machine.recompute(RATE_ID)
        edges = await store.list_edges(from_rule_id=RATE_ID)
        assert [(e.to_rule_id, e.relation) for e in edges] == [("rule_vat_rate_v2", "SUPERSEDES")]
        assert await machine.enqueue_successor(backdated) is None


# ---------------------------------------------------------------------------
# Concurrent reschedule during a recompute
# ---------------------------------------------------------------------------


class GatedEdgeBuilder(EdgeBuilder):
    """Holds the first build_edges call for one rule until released."""

    def __init__(self, store, rule_id: str) -> None:
        super().__init__(store)
        self.rule_id = rule_id
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def build_edges(self, rule):
        edges = await super().build_edges(rule)
        if rule.id == self.rule_id and not self.release.is_set():
            self.entered.set()
            await self.release.wait()
        return edges


class TestConcurrentReschedule:
    @pytest.mark.asyncio
    async def test_pending_mark_survives_inflight_recompute(self, store, seed, make_rule_fn):
        await seed(["VAT_REDUCED_RATE"])
        await store.set_graph_status(REDUCED_ID, "CURRENT")
        builder = GatedEdgeBuilder(store, RATE_ID)
        machine = GraphStatusMachine(store, WorkQueue(store), edge_builder=builder)

        recompute = asyncio.create_task(machine.recompute(RATE_ID))
        await builder.entered.wait()
        await store.put_rule(make_rule_fn(
            "rule_vat_reduced_rate_v2", topic_key="VAT_REDUCED_RATE", version=2, value="8%",
            pointer_ids=["sp_reduced"], status="PUBLISHED", graph_status="CURRENT",
        ))
        reschedule = asyncio.create_task(machine.enqueue_dependents("VAT_REDUCED_RATE"))
        for _ in range(5):
            await asyncio.sleep(0)
        builder.release.set()

        inflight = await recompute
        assert inflight.graph_status == "CURRENT"
        assert [e.to_rule_id for e in await store.list_edges(from_rule_id=RATE_ID)] == [REDUCED_ID]
        assert await reschedule == [RATE_ID]
        assert (await store.get_rule(RATE_ID)).graph_status == "PENDING"
        assert (await store.get_work(f"graph:{RATE_ID}")).status == "QUEUED"

        await machine.recompute(RATE_ID)
        edges = await store.list_edges(from_rule_id=RATE_ID)
        assert [e.to_rule_id for e in edges] == ["rule_vat_reduced_rate_v2"]
        assert (await store.get_rule(RATE_ID)).graph_status == "CURRENT"
