# src/evidence/evidence_store.py — v1
"""Append-only, content-addressed evidence store.

Ingestion is idempotent on (url, digest) and serialized per URL, so two
workers receiving the same document concurrently produce one record. A
changed document produces a new record sharing the URL; earlier records are
never edited. Only verification metadata and the tombstone may change.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from regtruth.config.authority import DEFAULT_AUTHORITY_MAPPING, AuthorityMapping
from regtruth.core.errors import NotFoundError
from regtruth.core.models import (
    ChangeSignal,
    ContentClass,
    Evidence,
    SourceMetadata,
    utcnow,
)
from regtruth.evidence.fingerprint import (
    classify_content,
    content_digest,
    decode_content,
    make_evidence_id,
    text_digest,
)
from regtruth.evidence.staleness import (
    StalenessPolicy,
    StalenessResult,
    compute_staleness,
    has_content_changed,
)
from regtruth.pipeline.locks import KeyedLock
from regtruth.storage.base_store import BaseStore
from regtruth.tracking.audit_log import AuditLog

logger = logging.getLogger(__name__)


class EvidenceStore:
    """Ingestion, staleness and lifecycle operations over Evidence records."""

    def __init__(
        self,
        store: BaseStore,
        mapping: AuthorityMapping | None = None,
        policy: StalenessPolicy | None = None,
        audit: AuditLog | None = None,
    ) -> None:
        self._store = store
        self._mapping = mapping or DEFAULT_AUTHORITY_MAPPING
        self._policy = policy or StalenessPolicy()
        self._audit = audit or AuditLog(store)
        self._url_locks = KeyedLock("evidence-url")

    # --- Ingestion ---

    async def fetch_or_reuse(
        self,
        url: str,
        raw_content: str,
        *,
        metadata: SourceMetadata | None = None,
        content_type_hint: str | None = None,
        change_signal: ChangeSignal | None = None,
    ) -> Evidence:
        """Return the record for (url, digest(raw_content)), creating it if new.

        Args:
            url: Source URL; shared by all versions of the document.
            raw_content: Decoded document text.
            metadata: Source attributes used for authority classification.
            content_type_hint: MIME type reported by the fetcher.
            change_signal: etag / last-modified observed at fetch time.

        Returns:
            The existing record unchanged, or the newly created one.
        """
        return await self._ingest(
            url=url,
            digest=text_digest(raw_content),
            text=raw_content,
            content_class=classify_content(raw_content.encode("utf-8"), raw_content, content_type_hint),
            content_type_hint=content_type_hint,
            change_signal=change_signal,
            metadata=metadata,
        )

    async def submit_fetched_document(
        self,
        url: str,
        raw_bytes: bytes,
        content_type_hint: str | None = None,
        change_signal: ChangeSignal | None = None,
        metadata: SourceMetadata | None = None,
    ) -> str:
        """Ingestion boundary for the crawler. Idempotent on (url, sha256(raw_bytes))."""
        text = decode_content(raw_bytes)
        evidence = await self._ingest(
            url=url,
            digest=content_digest(raw_bytes),
            text=text,
            content_class=classify_content(raw_bytes, text, content_type_hint),
            content_type_hint=content_type_hint,
            change_signal=change_signal,
            metadata=metadata,
        )
        return evidence.id

    async def _ingest(
        self,
        url: str,
        digest: str,
        text: str,
        content_class: ContentClass,
        content_type_hint: str | None,
        change_signal: ChangeSignal | None,
        metadata: SourceMetadata | None,
    ) -> Evidence:
        async with self._url_locks.hold(url):
            existing = await self._store.find_evidence(url, digest)
            if existing is not None:
                logger.debug("Reusing evidence %s for %s", existing.id, url)
                return existing

            previous = await self._store.list_evidence(url)
            meta = metadata or SourceMetadata()
            now = utcnow()
            signal = change_signal or ChangeSignal()
            evidence = Evidence(
                id=make_evidence_id(url, digest),
                source_url=url,
                content_hash=digest,
                raw_content=text,
                fetched_at=now,
                content_class=content_class,
                content_type_hint=content_type_hint,
                metadata=meta,
                authority_tier=self._mapping.classify(meta, url),
                authority_mapping_version=self._mapping.version,
                last_verified_at=now,
                etag=signal.etag,
                last_modified=signal.last_modified,
            )
            stored, created = await self._store.insert_evidence_if_absent(evidence)

        if created:
            supersedes = previous[-1].id if previous else None
            await self._audit.record(
                "EVIDENCE_CREATED", "evidence", stored.id,
                source_url=url, content_hash=digest, previous_version=supersedes,
                authority_tier=stored.authority_tier,
            )
            if supersedes:
                logger.info(
                    "Source changed: %s -> new evidence %s (previous %s)",
                    url, stored.id, supersedes,
                )
            else:
                logger.info("New evidence %s for %s (%s)", stored.id, url, stored.authority_tier)
        return stored

    # --- Reads ---

    async def get(self, evidence_id: str) -> Evidence:
        evidence = await self._store.get_evidence(evidence_id)
        if evidence is None:
            raise NotFoundError("evidence", evidence_id)
        return evidence

    async def lineage(self, url: str) -> list[Evidence]:
        """All versions of a source, oldest first."""
        return await self._store.list_evidence(url)

    # --- Staleness ---

    def check_staleness(
        self,
        evidence: Evidence,
        policy: StalenessPolicy | None = None,
        change_signal: ChangeSignal | None = None,
        now: datetime | None = None,
    ) -> StalenessResult:
        return compute_staleness(evidence, policy or self._policy, change_signal, now)

    def is_stale(
        self,
        evidence: Evidence,
        policy: StalenessPolicy | None = None,
        change_signal: ChangeSignal | None = None,
        now: datetime | None = None,
    ) -> bool:
        """True when the evidence must be re-verified before it is relied on."""
        return self.check_staleness(evidence, policy, change_signal, now).is_stale

    async def record_verification(
        self,
        evidence_id: str,
        ok: bool,
        change_signal: ChangeSignal | None = None,
        now: datetime | None = None,
    ) -> Evidence:
        """Record the outcome of re-checking a source.

        A successful check with an unchanged signal refreshes last_verified_at.
        A successful check that reveals a change leaves the record STALE so the
        caller re-fetches (which creates a new record). A failed check counts
        toward the consecutive-failure limit.
        """
        evidence = await self.get(evidence_id)
        now = now or utcnow()
        changes: dict[str, Any]

        if not ok:
            failures = evidence.consecutive_failures + 1
            status = "EXPIRED" if failures >= self._policy.max_failures else "UNAVAILABLE"
            changes = {"consecutive_failures": failures, "staleness_status": status}
            logger.warning(
                "Verification of %s failed (%d consecutive)", evidence.source_url, failures
            )
        elif has_content_changed(evidence, change_signal):
            changes = {"consecutive_failures": 0, "staleness_status": "STALE"}
            logger.info("Change detected for %s; re-fetch required", evidence.source_url)
        else:
            changes = {
                "consecutive_failures": 0,
                "staleness_status": "FRESH",
                "last_verified_at": now,
            }
            if change_signal is not None:
                if evidence.etag is None and change_signal.etag:
                    changes["etag"] = change_signal.etag
                if evidence.last_modified is None and change_signal.last_modified:
                    changes["last_modified"] = change_signal.last_modified

        return await self._store.update_evidence_metadata(evidence_id, changes)

    async def update_evidence(self, evidence_id: str, **changes: Any) -> Evidence:
        """Update mutable fields. Frozen fields raise ImmutabilityViolation."""
        return await self._store.update_evidence_metadata(evidence_id, changes)

    # --- Tombstone ---

    async def tombstone(self, evidence_id: str, reason: str) -> Evidence:
        """Soft-delete: hide from new extraction, keep for provenance reads."""
        evidence = await self.get(evidence_id)
        if evidence.is_deleted:
            return evidence
        updated = await self._store.update_evidence_metadata(
            evidence_id, {"deleted_at": utcnow(), "deleted_reason": reason}
        )
        await self._audit.record("EVIDENCE_TOMBSTONED", "evidence", evidence_id, reason=reason)
        logger.info("Tombstoned evidence %s: %s", evidence_id, reason)
        return updated
