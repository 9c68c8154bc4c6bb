# src/config/settings.py — v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for all deployment-specific settings. Cross-field
rules are checked once at load time and reported together.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from regtruth.core.models import AUTHORITY_TIERS, VALUE_TYPES


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Persistence ===
    store_backend: Literal["memory", "sqlite"] = "memory"
    store_path: Path = Path("~/.regtruth/regtruth.db")

    # === Extraction service ===
    extraction_provider: str = "anthropic"
    extraction_model: str = "claude-sonnet-4-20250514"
    extraction_max_tokens: int = 4096
    anthropic_api_key: str = ""
    extraction_max_attempts: int = 3
    extraction_timeout_s: float = 30.0
    extraction_min_confidence: float = 0.5
    extraction_rate_per_minute: int = 20
    extraction_max_concurrent: int = 2

    # === Retry / queue ===
    retry_base_delay_s: float = 1.0
    retry_max_delay_s: float = 30.0
    queue_max_attempts: int = 5
    queue_poll_interval_s: float = 0.05

    # === Workers per stage ===
    extract_workers: int = 2
    compose_workers: int = 2
    graph_workers: int = 2

    # === Evidence staleness (days per authority tier) ===
    staleness_days_law: int = 30
    staleness_days_regulation: int = 21
    staleness_days_guidance: int = 14
    staleness_days_practice: int = 7
    staleness_max_failures: int = 3
    staleness_refetch_limit: int = 50

    # === Arbitration ===
    authority_mapping_path: Path | None = None
    authority_margin: float = 0.5
    recency_weight: float = 0.25
    recency_half_life_days: int = 365
    high_authority_tiers: str = "LAW"
    escalation_min_confidence: float = 0.85
    conflict_tolerances: dict[str, float] = {"rate": 0.0, "threshold": 0.0}
    high_risk_value_types: str = "threshold,rate,deadline,prohibition"

    # === Topics ===
    topics_path: Path | None = None

    # === Applies-when DSL ===
    dsl_max_pattern_length: int = 100
    dsl_max_input_length: int = 10_000
    dsl_regex_timeout_s: float = 0.05

    # === Human review ===
    review_sla_hours: int = 48

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("extraction_max_attempts", "queue_max_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        """Retry budgets must be bounded and at least one attempt."""
        if v < 1:
            raise ValueError("attempt budgets must be >= 1")
        return v

    @field_validator("conflict_tolerances")
    @classmethod
    def validate_tolerances(cls, v: dict[str, float]) -> dict[str, float]:
        unknown = sorted(set(v) - set(VALUE_TYPES))
        if unknown:
            raise ValueError(f"unknown value types in conflict_tolerances: {unknown}")
        if any(t < 0 for t in v.values()):
            raise ValueError("conflict tolerances must be >= 0")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.retry_base_delay_s > self.retry_max_delay_s:
            errors.append("RETRY_BASE_DELAY_S must be <= RETRY_MAX_DELAY_S")

        if self.extraction_timeout_s <= 0:
            errors.append("EXTRACTION_TIMEOUT_S must be > 0")

        days = (
            self.staleness_days_law,
            self.staleness_days_regulation,
            self.staleness_days_guidance,
            self.staleness_days_practice,
        )
        if any(d <= 0 for d in days):
            errors.append("STALENESS_DAYS_* must all be > 0")

        if self.staleness_refetch_limit < 1:
            errors.append("STALENESS_REFETCH_LIMIT must be >= 1")

        bad_tiers = [t for t in self.high_authority_tiers_list if t not in AUTHORITY_TIERS]
        if bad_tiers:
            errors.append(f"HIGH_AUTHORITY_TIERS has unknown tiers: {bad_tiers}")

        bad_types = [t for t in self.high_risk_value_types_list if t not in VALUE_TYPES]
        if bad_types:
            errors.append(f"HIGH_RISK_VALUE_TYPES has unknown types: {bad_types}")

        if not 0.0 <= self.extraction_min_confidence <= 1.0:
            errors.append("EXTRACTION_MIN_CONFIDENCE must be in [0, 1]")

        if not 0.0 <= self.escalation_min_confidence <= 1.0:
            errors.append("ESCALATION_MIN_CONFIDENCE must be in [0, 1]")

        if self.authority_margin < 0 or self.recency_weight < 0:
            errors.append("AUTHORITY_MARGIN and RECENCY_WEIGHT must be >= 0")

        if min(self.extract_workers, self.compose_workers, self.graph_workers) < 1:
            errors.append("Each stage needs at least one worker")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def high_authority_tiers_list(self) -> list[str]:
        """Parse comma-separated high-authority tiers."""
        return [t.strip().upper() for t in self.high_authority_tiers.split(",") if t.strip()]

    @property
    def high_risk_value_types_list(self) -> list[str]:
        """Parse comma-separated high-risk value types."""
        return [t.strip() for t in self.high_risk_value_types.split(",") if t.strip()]

    @property
    def staleness_days(self) -> dict[str, int]:
        """Staleness threshold in days keyed by authority tier."""
        return {
            "LAW": self.staleness_days_law,
            "REGULATION": self.staleness_days_regulation,
            "GUIDANCE": self.staleness_days_guidance,
            "PRACTICE": self.staleness_days_practice,
        }


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or per-run config).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
