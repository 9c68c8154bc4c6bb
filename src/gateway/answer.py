# src/gateway/answer.py — v1
"""Query/answer gateway.

Gates, in order: a published rule must cover the date; its graph status,
when present, must be CURRENT; no open or escalated conflict may touch the
rule or its pointers; and its applies-when predicate, when a context is
given, must hold. The first failing gate produces a typed refusal. Rules
imported without a graph status still answer, but every such evaluation
is written to the audit trail.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

from regtruth.composer.dsl import PredicateEvaluator
from regtruth.core.models import Conflict, Rule
from regtruth.gateway.models import AnswerResult, Citation, RefusalReason
from regtruth.gateway.selector import select_rule
from regtruth.storage.base_store import BaseStore
from regtruth.tracking.audit_log import AuditLog

logger = logging.getLogger(__name__)


class AnswerGateway:
    def __init__(
        self,
        store: BaseStore,
        evaluator: PredicateEvaluator | None = None,
        audit: AuditLog | None = None,
    ) -> None:
        self._store = store
        self._evaluator = evaluator or PredicateEvaluator()
        self._audit = audit or AuditLog(store)

    async def answer(
        self,
        topic_key: str,
        as_of: date,
        context: dict[str, Any] | None = None,
    ) -> AnswerResult:
        """Answer a topic for a date, or refuse with a reason."""
        selected = await select_rule(self._store, topic_key, as_of)
        if selected is None:
            return self._refuse(
                topic_key, as_of, "NO_RULE_FOUND",
                f"no published rule for {topic_key} covers {as_of.isoformat()}",
            )
        rule, graph_status = selected

        if graph_status is not None and graph_status != "CURRENT":
            return self._refuse(
                topic_key, as_of, "GRAPH_INCONSISTENT",
                f"{rule.id} graph status is {graph_status}"
                + (f": {rule.graph_error}" if rule.graph_error else ""),
                rule=rule,
            )

        blocking = await self._blocking_conflicts(rule)
        if blocking:
            return self._refuse(
                topic_key, as_of, "CONFLICT_UNRESOLVED",
                f"{rule.id} is touched by unresolved conflicts: {', '.join(c.id for c in blocking)}",
                rule=rule,
            )

        if rule.applies_when is not None and context is not None:
            ctx = {"as_of": as_of, **context}
            if not self._evaluator.evaluate(rule.applies_when, ctx):
                return self._refuse(
                    topic_key, as_of, "NOT_APPLICABLE",
                    f"{rule.id} does not apply to the given context", rule=rule,
                )

        legacy = graph_status is None
        if legacy:
            logger.warning("Evaluating legacy rule %s without graph status", rule.id)
            await self._audit.record(
                "LEGACY_RULE_EVALUATED", "rule", rule.id,
                topic_key=topic_key, as_of=as_of.isoformat(),
            )

        return AnswerResult(
            success=True,
            topic_key=topic_key,
            as_of=as_of,
            value=rule.value,
            value_type=rule.value_type,
            citations=await self._citations(rule),
            confidence=rule.confidence,
            rule_id=rule.id,
            graph_status=graph_status,
            legacy=legacy,
        )

    # --- Helpers ---

    def _refuse(
        self,
        topic_key: str,
        as_of: date,
        reason: RefusalReason,
        message: str,
        rule: Rule | None = None,
    ) -> AnswerResult:
        logger.info("Refused %s @ %s: %s (%s)", topic_key, as_of, reason, message)
        return AnswerResult(
            success=False,
            topic_key=topic_key,
            as_of=as_of,
            refusal_reason=reason,
            message=message,
            rule_id=rule.id if rule else None,
            graph_status=rule.graph_status if rule else None,
        )

    async def _blocking_conflicts(self, rule: Rule) -> list[Conflict]:
        found: dict[str, Conflict] = {}
        for item_id in [rule.id, *rule.pointer_ids]:
            for c in await self._store.list_conflicts(item_id=item_id):
                if c.status in ("OPEN", "ESCALATED"):
                    found[c.id] = c
        return [found[k] for k in sorted(found)]

    async def _citations(self, rule: Rule) -> list[Citation]:
        citations: list[Citation] = []
        for pointer_id in rule.pointer_ids:
            pointer = await self._store.get_pointer(pointer_id)
            if pointer is None:
                continue
            evidence = await self._store.get_evidence(pointer.evidence_id)
            citations.append(
                Citation(
                    pointer_id=pointer.id,
                    evidence_id=pointer.evidence_id,
                    source_url=evidence.source_url if evidence else "",
                    exact_quote=pointer.exact_quote,
                    start_offset=pointer.start_offset,
                    end_offset=pointer.end_offset,
                    authority_tier=evidence.authority_tier if evidence else None,
                )
            )
        return citations
