# src/gateway/selector.py — v1
"""Pick the rule that governs a topic on a given date."""

from __future__ import annotations

from datetime import date

from regtruth.core.models import GraphStatus, Rule
from regtruth.storage.base_store import BaseStore


def rank_key(rule: Rule) -> tuple[date, int]:
    """Latest effective_from first, then highest version."""
    return (rule.effective_from or date.min, rule.version)


async def select_rule(
    store: BaseStore, topic_key: str, as_of: date
) -> tuple[Rule, GraphStatus | None] | None:
    """Among PUBLISHED rules whose window contains as_of, return the latest.

    Returns:
        (rule, graph_status) or None when no published rule covers as_of.
    """
    candidates = [
        r for r in await store.list_rules(topic_key, "PUBLISHED") if r.covers(as_of)
    ]
    if not candidates:
        return None
    best = max(candidates, key=rank_key)
    return best, best.graph_status
