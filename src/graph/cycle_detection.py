# src/graph/cycle_detection.py — v1
"""Cycle checks on the rule dependency graph (networkx)."""

from __future__ import annotations

import networkx as nx

from regtruth.core.models import GraphEdge


def build_digraph(edges: list[GraphEdge]) -> nx.DiGraph:
    graph = nx.DiGraph()
    for edge in edges:
        graph.add_edge(edge.from_rule_id, edge.to_rule_id, relation=edge.relation)
    return graph


def find_cycle(edges: list[GraphEdge], source: str | None = None) -> list[str] | None:
    """Return the rule ids on a cycle (first id repeated at the end), or None."""
    graph = build_digraph(edges)
    if source is not None and source not in graph:
        return None
    try:
        cycle = nx.find_cycle(graph, source=source, orientation="original")
    except nx.NetworkXNoCycle:
        return None
    nodes = [u for u, _v, _dir in cycle]
    return nodes + [nodes[0]]


def candidate_edges(
    existing: list[GraphEdge], rule_id: str, new_edges: list[GraphEdge]
) -> list[GraphEdge]:
    """The graph as it would be if rule_id's outgoing edges were replaced."""
    kept = [e for e in existing if e.from_rule_id != rule_id]
    return kept + list(new_edges)

