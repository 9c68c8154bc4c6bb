# src/config/authority.py — v1
"""Declarative, versioned mapping from source metadata to authority tier.

The mapping is data, not code: it can be loaded from a YAML file referenced
by AUTHORITY_MAPPING_PATH and every Evidence records the mapping version it
was classified with. Matching is exact on normalised attribute values;
entries are tried in order and the first full match wins.

YAML layout::

    version: "2026-01"
    default_tier: PRACTICE
    tier_scores: {LAW: 4, REGULATION: 3, GUIDANCE: 2, PRACTICE: 1}
    entries:
      - match: {document_kind: statute}
        tier: LAW
      - match: {publisher: tax-authority, document_kind: guidance}
        tier: GUIDANCE
"""

from __future__ import annotations

import logging
from pathlib import Path
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, Field, field_validator

from regtruth.core.models import AuthorityTier, SourceMetadata

logger = logging.getLogger(__name__)

_MATCH_KEYS = ("document_kind", "publisher", "jurisdiction", "host")


class AuthorityRule(BaseModel):
    """One row of the mapping table."""

    match: dict[str, str]
    tier: AuthorityTier

    @field_validator("match")
    @classmethod
    def validate_match(cls, v: dict[str, str]) -> dict[str, str]:
        if not v:
            raise ValueError("match must name at least one attribute")
        unknown = sorted(set(v) - set(_MATCH_KEYS))
        if unknown:
            raise ValueError(f"unsupported match attributes: {unknown}")
        return {k: _norm(val) for k, val in v.items()}


class AuthorityMapping(BaseModel):
    """Versioned mapping table plus the numeric score of each tier."""

    version: str
    default_tier: AuthorityTier = "PRACTICE"
    tier_scores: dict[AuthorityTier, float] = Field(
        default_factory=lambda: {"LAW": 4.0, "REGULATION": 3.0, "GUIDANCE": 2.0, "PRACTICE": 1.0}
    )
    entries: list[AuthorityRule] = Field(default_factory=list)

    def classify(self, metadata: SourceMetadata, source_url: str | None = None) -> AuthorityTier:
        """Return the tier of the first entry whose attributes all match."""
        attrs = {
            "document_kind": _norm(metadata.document_kind),
            "publisher": _norm(metadata.publisher),
            "jurisdiction": _norm(metadata.jurisdiction),
            "host": _norm(urlparse(source_url).hostname) if source_url else "",
        }
        for entry in self.entries:
            if all(attrs.get(k) == v for k, v in entry.match.items()):
                return entry.tier
        return self.default_tier

    def score(self, tier: str | None) -> float:
        """Numeric weight of a tier; unknown tiers weigh zero."""
        if tier is None:
            return 0.0
        return float(self.tier_scores.get(tier, 0.0))  # type: ignore[call-overload]


def _norm(value: str | None) -> str:
    return (value or "").strip().lower()


DEFAULT_AUTHORITY_MAPPING = AuthorityMapping(
    version="builtin-1",
    entries=[
        AuthorityRule(match={"document_kind": "constitution"}, tier="LAW"),
        AuthorityRule(match={"document_kind": "statute"}, tier="LAW"),
        AuthorityRule(match={"document_kind": "law"}, tier="LAW"),
        AuthorityRule(match={"document_kind": "official_gazette"}, tier="LAW"),
        AuthorityRule(match={"document_kind": "regulation"}, tier="REGULATION"),
        AuthorityRule(match={"document_kind": "ordinance"}, tier="REGULATION"),
        AuthorityRule(match={"document_kind": "decree"}, tier="REGULATION"),
        AuthorityRule(match={"document_kind": "guidance"}, tier="GUIDANCE"),
        AuthorityRule(match={"document_kind": "ruling"}, tier="GUIDANCE"),
        AuthorityRule(match={"document_kind": "circular"}, tier="GUIDANCE"),
        AuthorityRule(match={"document_kind": "faq"}, tier="PRACTICE"),
        AuthorityRule(match={"document_kind": "practice_guide"}, tier="PRACTICE"),
    ],
)


def load_authority_mapping(path: Path | str | None = None) -> AuthorityMapping:
    """Load the mapping from YAML, or return the built-in default.

    Raises:
        FileNotFoundError: If path is given but does not exist.
        pydantic.ValidationError: If the file does not describe a valid mapping.
    """
    if path is None:
        return DEFAULT_AUTHORITY_MAPPING

    file_path = Path(path).expanduser()
    with open(file_path, encoding="utf-8") as f:
        content = yaml.safe_load(f) or {}

    mapping = AuthorityMapping.model_validate(content)
    logger.info(
        "Loaded authority mapping %s (%d entries) from %s",
        mapping.version, len(mapping.entries), file_path,
    )
    return mapping
