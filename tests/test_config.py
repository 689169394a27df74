"""Tests for configuration models and YAML loading."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from sheetrelay.core.config import (
    EscalationConfig,
    LockConfig,
    LogConfig,
    RelayConfig,
    SchedulerConfig,
    TierConfig,
    TimeoutConfig,
)
from sheetrelay.core.constants import DEFAULT_LOCK_TOKEN
from sheetrelay.core.errors import EscalationTier, RecoveryAction


class TestDefaults:
    """Tests for default configuration values."""

    def test_relay_defaults(self) -> None:
        config = RelayConfig()

        assert config.scheduler.batch_size == 3
        assert config.scheduler.stagger_delay_seconds == 5.0
        assert config.scheduler.max_workers == 3
        assert config.scheduler.reprocess_failed_delays == []
        assert config.escalation.max_attempts == 20
        assert config.escalation.vendor == "generic"
        assert config.escalation.history_capacity == 50
        assert config.escalation.consecutive_escalation_threshold is None
        assert config.timeouts.short_timeout_seconds == 60
        assert config.timeouts.long_timeout_seconds == 2400
        assert config.wait.check_interval_seconds == 60
        assert config.wait.default_max_wait_seconds == 300
        assert config.wait.long_max_wait_seconds == 2400
        assert config.wait.progress_every == 5
        assert config.wait.wait_for_busy is False
        assert config.lock.lock_token == DEFAULT_LOCK_TOKEN
        assert config.lock.timezone == "UTC"
        assert config.logging.level == "INFO"

    def test_default_tiers(self) -> None:
        tiers = EscalationConfig().tiers

        assert [t.tier for t in tiers] == list(EscalationTier)
        assert [(t.range_start, t.range_end) for t in tiers] == [(1, 5), (6, 8), (9, 20)]
        assert tiers[2].delays == [300.0, 900.0, 1800.0, 3600.0, 7200.0]
        assert tiers[1].action is RecoveryAction.REFRESH_WORKER


class TestValidation:
    """Tests for configuration validation."""

    def test_batch_size_positive(self) -> None:
        with pytest.raises(ValidationError):
            SchedulerConfig(batch_size=0)

    def test_negative_reprocess_delay_rejected(self) -> None:
        with pytest.raises(ValidationError, match="negative"):
            SchedulerConfig(reprocess_failed_delays=[300, -1])

    def test_tier_range_inverted(self) -> None:
        with pytest.raises(ValidationError, match="range_end"):
            TierConfig(
                tier=EscalationTier.LIGHTWEIGHT,
                range_start=5,
                range_end=1,
                delays=[1.0],
                action=RecoveryAction.RETRY_SAME_WORKER,
            )

    def test_tiers_must_be_contiguous(self) -> None:
        tiers = [t.model_dump() for t in EscalationConfig().tiers]
        tiers[1]["range_start"] = 7

        with pytest.raises(ValidationError, match="contiguous"):
            EscalationConfig(tiers=tiers)

    def test_tiers_must_be_complete(self) -> None:
        tiers = [t.model_dump() for t in EscalationConfig().tiers][:2]

        with pytest.raises(ValidationError, match="exactly once"):
            EscalationConfig(tiers=tiers)

    def test_short_timeout_not_above_long(self) -> None:
        with pytest.raises(ValidationError, match="short_timeout_seconds"):
            TimeoutConfig(short_timeout_seconds=3000, long_timeout_seconds=2400)

    def test_lock_token_without_separator(self) -> None:
        with pytest.raises(ValidationError, match="must not contain"):
            LockConfig(lock_token="busy_now")

    def test_log_both_requires_file(self) -> None:
        with pytest.raises(ValidationError, match="file_path is required"):
            LogConfig(format="both")


class TestYamlLoading:
    """Tests for RelayConfig.from_yaml / from_yaml_string."""

    def test_from_yaml_string(self) -> None:
        config = RelayConfig.from_yaml_string(
            """
scheduler:
  batch_size: 2
  stagger_delay_seconds: 1.5
  reprocess_failed_delays: [300, 1800, 3600]
escalation:
  vendor: claude
  consecutive_escalation_threshold: 5
wait:
  wait_for_busy: true
lock:
  timezone: Asia/Tokyo
"""
        )

        assert config.scheduler.batch_size == 2
        assert config.scheduler.stagger_delay_seconds == 1.5
        assert config.scheduler.reprocess_failed_delays == [300, 1800, 3600]
        assert config.escalation.vendor == "claude"
        assert config.escalation.consecutive_escalation_threshold == 5
        assert config.wait.wait_for_busy is True
        assert config.lock.timezone == "Asia/Tokyo"

    def test_empty_document(self) -> None:
        config = RelayConfig.from_yaml_string("")

        assert config.scheduler.batch_size == 3

    def test_from_yaml_file(self, tmp_path: Path) -> None:
        path = tmp_path / "relay.yaml"
        path.write_text("scheduler:\n  max_workers: 5\n", encoding="utf-8")

        config = RelayConfig.from_yaml(path)

        assert config.scheduler.max_workers == 5

    def test_invalid_yaml_value(self) -> None:
        with pytest.raises(ValidationError):
            RelayConfig.from_yaml_string("scheduler:\n  batch_size: -1\n")
