# src/graph/edge_builder.py — v1
"""Derive a rule's outgoing edges from its pointers and version history.

DEPENDS_ON points at the latest published rule of every topic the rule's
pointers reference. SUPERSEDES points at the published rule of the same
topic that takes effect immediately before it (by effective_from, then
version), so a backdated publication slots into the chain. Output
carries no timestamps and is sorted, so rebuilding an unchanged rule
yields an identical edge set.
"""

from __future__ import annotations

import logging
from datetime import date

from regtruth.core.errors import MissingDependency
from regtruth.core.models import GraphEdge, Rule
from regtruth.storage.base_store import BaseStore

logger = logging.getLogger(__name__)


class EdgeBuilder:
    def __init__(self, store: BaseStore) -> None:
        self._store = store

    async def referenced_topics(self, rule: Rule) -> list[str]:
        """Topics cited by the rule's pointers, excluding its own topic."""
        topics: set[str] = set()
        for pointer_id in rule.pointer_ids:
            pointer = await self._store.get_pointer(pointer_id)
            if pointer is None:
                logger.warning("Rule %s cites missing pointer %s", rule.id, pointer_id)
                continue
            topics.update(t for t in pointer.references if t != rule.topic_key)
        return sorted(topics)

    async def latest_published(self, topic_key: str, exclude: str | None = None) -> Rule | None:
        rules = [
            r for r in await self._store.list_rules(topic_key, "PUBLISHED") if r.id != exclude
        ]
        return max(rules, key=lambda r: r.version, default=None)

    @staticmethod
    def supersession_key(rule: Rule) -> tuple[date, int]:
        """Order of versions within a topic: effective_from, then version."""
        return (rule.effective_from or date.min, rule.version)

    async def predecessor(self, rule: Rule) -> Rule | None:
        """Published rule of the same topic that takes effect immediately before rule."""
        key = self.supersession_key(rule)
        earlier = [
            r for r in await self._store.list_rules(rule.topic_key, "PUBLISHED")
            if r.id != rule.id and self.supersession_key(r) < key
        ]
        return max(earlier, key=self.supersession_key, default=None)

    async def successor(self, rule: Rule) -> Rule | None:
        """Published rule of the same topic that takes effect immediately after rule."""
        key = self.supersession_key(rule)
        later = [
            r for r in await self._store.list_rules(rule.topic_key, "PUBLISHED")
            if r.id != rule.id and self.supersession_key(r) > key
        ]
        return min(later, key=self.supersession_key, default=None)

    async def build_edges(self, rule: Rule) -> list[GraphEdge]:
        """Compute the outgoing edges of a rule.

        Raises:
            MissingDependency: If a referenced topic has no published rule.
        """
        edges: list[GraphEdge] = []
        for topic_key in await self.referenced_topics(rule):
            target = await self.latest_published(topic_key, exclude=rule.id)
            if target is None:
                raise MissingDependency(rule.id, topic_key)
            edges.append(
                GraphEdge(
                    from_rule_id=rule.id,
                    to_rule_id=target.id,
                    relation="DEPENDS_ON",
                    topic_key=topic_key,
                )
            )

        previous = await self.predecessor(rule)
        if previous is not None:
            edges.append(
                GraphEdge(
                    from_rule_id=rule.id,
                    to_rule_id=previous.id,
                    relation="SUPERSEDES",
                    topic_key=rule.topic_key,
                )
            )
        return sorted(edges, key=lambda e: e.key)
