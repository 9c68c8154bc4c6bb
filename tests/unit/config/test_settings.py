# tests/unit/config/test_settings.py — v1
"""Tests for config/settings.py — typed Settings and validation rules."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from regtruth.config.settings import ConfigurationError, Settings, load_settings


class TestSettingsDefaults:
    def test_default_store(self):
        s = Settings(_env_file=None)
        assert s.store_backend == "memory"

    def test_default_extraction_budget(self):
        s = Settings(_env_file=None)
        assert s.extraction_max_attempts == 3
        assert s.extraction_rate_per_minute == 20

    def test_default_staleness_days(self):
        s = Settings(_env_file=None)
        assert s.staleness_days == {
            "LAW": 30,
            "REGULATION": 21,
            "GUIDANCE": 14,
            "PRACTICE": 7,
        }

    def test_default_dsl_limits(self):
        s = Settings(_env_file=None)
        assert s.dsl_max_pattern_length == 100
        assert s.dsl_regex_timeout_s == pytest.approx(0.05)

    def test_list_helpers(self):
        s = Settings(_env_file=None, high_authority_tiers="law, regulation")
        assert s.high_authority_tiers_list == ["LAW", "REGULATION"]
        assert "rate" in s.high_risk_value_types_list


class TestSettingsValidation:
    def test_retry_delays_ordered(self):
        with pytest.raises(ConfigurationError, match="RETRY_BASE_DELAY_S"):
            Settings(_env_file=None, retry_base_delay_s=10.0, retry_max_delay_s=1.0)

    def test_unknown_high_authority_tier(self):
        with pytest.raises(ConfigurationError, match="HIGH_AUTHORITY_TIERS"):
            Settings(_env_file=None, high_authority_tiers="LAW,SCRIPTURE")

    def test_non_positive_staleness(self):
        with pytest.raises(ConfigurationError, match="STALENESS_DAYS"):
            Settings(_env_file=None, staleness_days_guidance=0)

    def test_escalation_confidence_bounded(self):
        with pytest.raises(ConfigurationError, match="ESCALATION_MIN_CONFIDENCE"):
            Settings(_env_file=None, escalation_min_confidence=1.5)

    def test_refetch_limit_positive(self):
        with pytest.raises(ConfigurationError, match="STALENESS_REFETCH_LIMIT"):
            Settings(_env_file=None, staleness_refetch_limit=0)

    def test_errors_are_joined(self):
        with pytest.raises(ConfigurationError) as exc:
            Settings(
                _env_file=None,
                extraction_min_confidence=2.0,
                graph_workers=0,
            )
        assert "EXTRACTION_MIN_CONFIDENCE" in str(exc.value)
        assert "worker" in str(exc.value)

    def test_zero_attempts_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, extraction_max_attempts=0)

    def test_negative_tolerance_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, conflict_tolerances={"rate": -0.1})

    def test_unknown_tolerance_type_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, conflict_tolerances={"colour": 0.1})


class TestLoadSettings:
    def test_overrides(self):
        s = load_settings(_env_file=None, authority_margin=1.5)
        assert s.authority_margin == 1.5

    def test_env_var(self, monkeypatch):
        monkeypatch.setenv("EXTRACT_WORKERS", "7")
        s = Settings(_env_file=None)
        assert s.extract_workers == 7
