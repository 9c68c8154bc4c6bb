# src/gateway/provenance.py — v1
"""Provenance read API: rule -> pointers -> evidence -> offsets.

Each link is re-verified against the stored evidence text on every read.
Tombstoned evidence still resolves; it is flagged, not hidden.
"""

from __future__ import annotations

import logging

from regtruth.core.errors import NotFoundError
from regtruth.extraction.offsets import holds_invariant
from regtruth.gateway.models import ProvenanceChain, ProvenanceLink
from regtruth.storage.base_store import BaseStore

logger = logging.getLogger(__name__)


async def provenance(store: BaseStore, rule_id: str) -> ProvenanceChain:
    """Build the provenance chain of a rule.

    Raises:
        NotFoundError: If the rule does not exist.
    """
    rule = await store.get_rule(rule_id)
    if rule is None:
        raise NotFoundError("rule", rule_id)

    links: list[ProvenanceLink] = []
    for pointer_id in rule.pointer_ids:
        pointer = await store.get_pointer(pointer_id)
        if pointer is None:
            logger.error("Rule %s cites missing pointer %s", rule_id, pointer_id)
            continue
        evidence = await store.get_evidence(pointer.evidence_id)
        verified = evidence is not None and holds_invariant(
            evidence.raw_content, pointer.start_offset, pointer.end_offset, pointer.exact_quote
        )
        if not verified:
            logger.error(
                "Provenance broken for %s: pointer %s no longer matches %s",
                rule_id, pointer_id, pointer.evidence_id,
            )
        links.append(
            ProvenanceLink(
                pointer_id=pointer.id,
                evidence_id=pointer.evidence_id,
                source_url=evidence.source_url if evidence else None,
                content_hash=evidence.content_hash if evidence else None,
                exact_quote=pointer.exact_quote,
                start_offset=pointer.start_offset,
                end_offset=pointer.end_offset,
                match_type=pointer.match_type,
                verified=verified,
                evidence_deleted=bool(evidence and evidence.is_deleted),
                authority_tier=evidence.authority_tier if evidence else None,
            )
        )

    return ProvenanceChain(
        rule_id=rule.id,
        topic_key=rule.topic_key,
        version=rule.version,
        value=rule.value,
        status=rule.status,
        graph_status=rule.graph_status,
        links=links,
    )
