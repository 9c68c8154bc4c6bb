# tests/unit/graph/test_unit_cycle_detection.py — v1
"""Tests for graph/cycle_detection.py."""

from __future__ import annotations

from regtruth.core.models import GraphEdge
from regtruth.graph.cycle_detection import candidate_edges, find_cycle


def _dep(a: str, b: str) -> GraphEdge:
    return GraphEdge(from_rule_id=a, to_rule_id=b, relation="DEPENDS_ON", topic_key="T")


class TestFindCycle:
    def test_acyclic(self):
        assert find_cycle([_dep("a", "b"), _dep("b", "c")]) is None

    def test_two_node_cycle(self):
        cycle = find_cycle([_dep("a", "b"), _dep("b", "a")], source="a")
        assert cycle == ["a", "b", "a"]

    def test_source_not_in_graph(self):
        assert find_cycle([_dep("a", "b"), _dep("b", "a")], source="zzz") is None

    def test_empty(self):
        assert find_cycle([]) is None


class TestCandidateEdges:
    def test_replaces_outgoing(self):
        existing = [_dep("a", "b"), _dep("c", "a")]
        result = candidate_edges(existing, "a", [_dep("a", "c")])
        assert {e.key for e in result} == {("c", "a", "DEPENDS_ON"), ("a", "c", "DEPENDS_ON")}
        assert find_cycle(result, source="a") is not None

