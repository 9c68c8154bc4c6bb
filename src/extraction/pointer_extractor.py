# src/extraction/pointer_extractor.py — v1
"""Turn evidence text into verified, offset-anchored SourcePointers.

The extraction service proposes candidates; this module decides what is
true. Every candidate is schema-screened, then its quote is re-read from
the immutable evidence text at the claimed offsets (see offsets.py).
Candidates that fail the check are kept as NOT_FOUND pointers for audit
but never reach composition.

Unusable replies (malformed JSON, nothing returned, nothing above the
confidence floor) and timeouts share one bounded attempt budget; once it
is spent ExtractionFailure is raised and the caller parks the evidence.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import date

from pydantic import ValidationError

from regtruth.composer.topics import TopicRegistry, TopicSchema
from regtruth.config.settings import Settings
from regtruth.core.errors import (
    ExternalServiceTimeout,
    ExtractionFailure,
    ProvenanceMismatch,
    RetryExhausted,
)
from regtruth.core.models import VALUE_TYPES, Evidence, SourcePointer
from regtruth.extraction.offsets import utf16_slice, verify_quote
from regtruth.llm.base_client import BaseExtractionClient
from regtruth.llm.models import (
    CandidateAssertion,
    ExtractionRequest,
    ExtractionResponse,
    TopicHint,
)
from regtruth.llm.rate_limiter import AsyncRateLimiter
from regtruth.llm.retry import build_retry_configs, with_retry
from regtruth.tracking.call_logger import CallLogger

logger = logging.getLogger(__name__)


class UnusableExtraction(Exception):
    """Service replied, but with nothing that can be used."""

    retry_category = "parse_error"


@dataclass
class ScreenResult:
    """Candidates that passed schema screening and why others did not."""

    accepted: list[CandidateAssertion] = field(default_factory=list)
    rejected: dict[str, int] = field(default_factory=dict)

    def reject(self, reason: str) -> None:
        self.rejected[reason] = self.rejected.get(reason, 0) + 1


def make_pointer_id(evidence_id: str, topic_key: str, value_type: str, value: str,
                    start: int, end: int) -> str:
    """Deterministic id so re-extracting identical output is idempotent."""
    key = f"{evidence_id}|{topic_key}|{value_type}|{value}|{start}|{end}"
    return f"sp_{hashlib.sha256(key.encode('utf-8')).hexdigest()[:16]}"


def _parse_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


class PointerExtractor:
    """Drive the extraction service and verify what it claims."""

    def __init__(
        self,
        client: BaseExtractionClient,
        topics: TopicRegistry,
        settings: Settings,
        rate_limiter: AsyncRateLimiter | None = None,
        call_logger: CallLogger | None = None,
    ) -> None:
        self._client = client
        self._topics = topics
        self._settings = settings
        self._limiter = rate_limiter or AsyncRateLimiter(
            max_per_minute=settings.extraction_rate_per_minute,
            max_concurrent=settings.extraction_max_concurrent,
        )
        self._calls = call_logger or CallLogger()
        self._retry_configs = build_retry_configs(
            settings.retry_base_delay_s, settings.retry_max_delay_s
        )

    @property
    def call_logger(self) -> CallLogger:
        return self._calls

    async def extract(
        self, evidence: Evidence, topics: list[TopicSchema] | None = None
    ) -> list[SourcePointer]:
        """Extract and verify pointers for one evidence record.

        Args:
            evidence: Immutable source record.
            topics: Topics to look for (defaults to every registered topic).

        Returns:
            Pointers tagged EXACT, NORMALIZED or NOT_FOUND.

        Raises:
            ExtractionFailure: When the bounded attempt budget is exhausted.
        """
        if evidence.is_deleted:
            logger.info("Skipping tombstoned evidence %s", evidence.id)
            return []

        wanted = topics if topics is not None else list(self._topics)
        request = ExtractionRequest(
            evidence_id=evidence.id,
            source_url=evidence.source_url,
            text=evidence.raw_content,
            topics=[
                TopicHint(
                    topic_key=t.topic_key,
                    description=t.description,
                    value_types=t.accepted_value_types,
                )
                for t in wanted
            ],
        )
        topic_keys = {t.topic_key for t in wanted}
        attempt_no = 0

        async def attempt() -> list[CandidateAssertion]:
            nonlocal attempt_no
            attempt_no += 1
            response = await self._call(request, attempt_no)
            screened = self._screen(self._parse(response.content), topic_keys)
            self._calls.record(
                evidence.id, response.provider, attempt_no, "success",
                latency_ms=response.latency_ms,
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
                candidates=len(screened.accepted),
            )
            if not screened.accepted:
                raise UnusableExtraction(
                    f"no usable candidates (rejected: {screened.rejected or 'none returned'})"
                )
            if screened.rejected:
                logger.info(
                    "Dropped candidates for %s: %s", evidence.id, screened.rejected,
                    extra={"data": screened.rejected},
                )
            return screened.accepted

        try:
            candidates = await with_retry(
                attempt,
                operation=f"extract:{evidence.id}",
                retry_configs=self._retry_configs,
                max_attempts=self._settings.extraction_max_attempts,
            )
        except RetryExhausted as e:
            raise ExtractionFailure(evidence.id, e.attempts, str(e.last_error)) from e

        pointers = [self._verify(evidence, c) for c in candidates]
        counts: dict[str, int] = {}
        for p in pointers:
            counts[p.match_type] = counts.get(p.match_type, 0) + 1
        logger.info(
            "Extracted %d pointers from %s %s", len(pointers), evidence.id, counts,
            extra={"data": counts},
        )
        return pointers

    # --- Service call ---

    async def _call(self, request: ExtractionRequest, attempt_no: int) -> ExtractionResponse:
        timeout_s = self._settings.extraction_timeout_s
        async with self._limiter:
            try:
                return await asyncio.wait_for(self._client.extract(request), timeout=timeout_s)
            except asyncio.TimeoutError as e:
                self._calls.record(
                    request.evidence_id, self._client.provider_name, attempt_no, "timeout",
                    error=f"timeout after {timeout_s}s",
                )
                raise ExternalServiceTimeout(self._client.provider_name, timeout_s) from e

    # --- Untrusted output handling ---

    @staticmethod
    def _parse(content: str) -> list[object]:
        """Decode the reply into a list of raw candidate items."""
        try:
            data = json.loads(content)
        except (json.JSONDecodeError, TypeError) as e:
            raise UnusableExtraction(f"malformed JSON: {e}") from e
        if isinstance(data, dict):
            data = data.get("candidates")
        if not isinstance(data, list):
            raise UnusableExtraction("reply has no candidate list")
        return data

    def _screen(self, items: list[object], topic_keys: set[str]) -> ScreenResult:
        """Schema checks that need no access to the evidence text."""
        result = ScreenResult()
        min_conf = self._settings.extraction_min_confidence
        only_topic = next(iter(topic_keys)) if len(topic_keys) == 1 else None

        for item in items:
            try:
                cand = CandidateAssertion.model_validate(item)
            except ValidationError:
                result.reject("schema")
                continue
            if cand.topic_key is None and only_topic is not None:
                cand = cand.model_copy(update={"topic_key": only_topic})
            if cand.topic_key not in topic_keys:
                result.reject("unknown_topic")
            elif cand.value_type not in VALUE_TYPES:
                result.reject("unknown_value_type")
            elif not cand.quote or cand.start_offset < 0 or cand.end_offset <= cand.start_offset:
                result.reject("bad_offsets")
            elif not 0.0 <= cand.confidence <= 1.0 or cand.confidence < min_conf:
                result.reject("low_confidence")
            else:
                result.accepted.append(cand)
        return result

    def _verify(self, evidence: Evidence, cand: CandidateAssertion) -> SourcePointer:
        """Re-read the quote at the claimed offsets and build the pointer."""
        match = verify_quote(evidence.raw_content, cand.start_offset, cand.end_offset, cand.quote)
        topic_key = cand.topic_key or ""

        if not match.verified:
            actual = utf16_slice(evidence.raw_content, cand.start_offset, cand.end_offset) or ""
            mismatch = ProvenanceMismatch(
                evidence.id, cand.start_offset, cand.end_offset, cand.quote, actual
            )
            logger.warning("%s", mismatch, extra={"data": {"topic_key": topic_key}})
        elif match.index_system != "utf16":
            logger.info(
                "Re-anchored %s offsets [%d:%d] -> utf16 [%d:%d] in %s",
                match.index_system, cand.start_offset, cand.end_offset,
                match.start, match.end, evidence.id,
            )

        references = []
        for ref in cand.references:
            key = ref.strip().upper()
            if key == topic_key:
                continue
            if key in self._topics:
                references.append(key)
            else:
                logger.info("Ignoring reference to unknown topic %r in %s", ref, evidence.id)

        return SourcePointer(
            id=make_pointer_id(
                evidence.id, topic_key, cand.value_type, cand.value, match.start, match.end
            ),
            evidence_id=evidence.id,
            topic_key=topic_key,
            value_type=cand.value_type,  # type: ignore[arg-type]
            value=cand.value,
            exact_quote=match.quote,
            start_offset=match.start,
            end_offset=match.end,
            confidence=cand.confidence,
            match_type=match.match_type,
            effective_from=_parse_date(cand.effective_from),
            effective_to=_parse_date(cand.effective_to),
            references=sorted(set(references)),
        )
