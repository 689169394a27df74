"""Scheduling, escalation, timeout and wait configuration models.

Defines models for batch scheduling, tiered retry escalation, attempt and
marker timeouts, the adaptive wait strategy, exclusivity markers and
input assembly.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from sheetrelay.core.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_CHECK_INTERVAL_SECONDS,
    DEFAULT_LOCK_TOKEN,
    DEFAULT_MARKER_TIMEOUT_SECONDS,
    DEFAULT_MAX_WAIT_SECONDS,
    DEFAULT_MAX_WORKERS,
    DEFAULT_STAGGER_DELAY_SECONDS,
    ERROR_HISTORY_CAPACITY,
    LONG_DISPATCH_TIMEOUT_SECONDS,
    LONG_MAX_WAIT_SECONDS,
    MARKER_SEPARATOR,
    MAX_TOTAL_ATTEMPTS,
    PROGRESS_REPORT_EVERY,
    SHORT_DISPATCH_TIMEOUT_SECONDS,
)
from sheetrelay.core.errors.codes import EscalationTier, RecoveryAction


class SchedulerConfig(BaseModel):
    """Configuration for column-major batch scheduling."""

    batch_size: int = Field(
        default=DEFAULT_BATCH_SIZE, ge=1, description="Maximum tasks launched per batch"
    )
    stagger_delay_seconds: float = Field(
        default=DEFAULT_STAGGER_DELAY_SECONDS,
        ge=0,
        description="Delay between consecutive launches inside one batch",
    )
    max_workers: int = Field(
        default=DEFAULT_MAX_WORKERS, ge=1, description="Worker slots in the pool"
    )
    reprocess_failed_delays: list[float] = Field(
        default_factory=list,
        description=(
            "Delays (seconds) after which a stage's failed tasks are re-run. "
            "Empty disables reprocessing; [300, 1800, 3600] gives three "
            "verification rounds at 5, 30 and 60 minutes."
        ),
    )
    owner_id: str | None = Field(
        default=None,
        description="Marker owner id for this process. Generated per run when unset.",
    )

    @field_validator("reprocess_failed_delays")
    @classmethod
    def _non_negative_delays(cls, v: list[float]) -> list[float]:
        if any(d < 0 for d in v):
            raise ValueError("reprocess_failed_delays must not contain negative values")
        return v


class TierConfig(BaseModel):
    """One escalation tier: an inclusive attempt range, its delays and action."""

    tier: EscalationTier
    range_start: int = Field(ge=1, description="First attempt number in this tier")
    range_end: int = Field(ge=1, description="Last attempt number in this tier")
    delays: list[float] = Field(min_length=1, description="Delay per attempt offset (seconds)")
    action: RecoveryAction

    @model_validator(mode="after")
    def _validate_range(self) -> TierConfig:
        if self.range_end < self.range_start:
            raise ValueError(
                f"range_end ({self.range_end}) must not be less than "
                f"range_start ({self.range_start}) for tier {self.tier.value}"
            )
        if any(d < 0 for d in self.delays):
            raise ValueError(f"delays for tier {self.tier.value} must not be negative")
        return self


def _default_tiers() -> list[TierConfig]:
    return [
        TierConfig(
            tier=EscalationTier.LIGHTWEIGHT,
            range_start=1,
            range_end=5,
            delays=[1.0, 2.0, 5.0, 10.0, 15.0],
            action=RecoveryAction.RETRY_SAME_WORKER,
        ),
        TierConfig(
            tier=EscalationTier.MODERATE,
            range_start=6,
            range_end=8,
            delays=[30.0, 60.0, 120.0],
            action=RecoveryAction.REFRESH_WORKER,
        ),
        TierConfig(
            tier=EscalationTier.HEAVY,
            range_start=9,
            range_end=MAX_TOTAL_ATTEMPTS,
            delays=[300.0, 900.0, 1800.0, 3600.0, 7200.0],
            action=RecoveryAction.RECREATE_WORKER,
        ),
    ]


class EscalationConfig(BaseModel):
    """Configuration for tiered retry escalation.

    Example:
        escalation:
          vendor: claude
          max_attempts: 20
          consecutive_escalation_threshold: 5
    """

    max_attempts: int = Field(
        default=MAX_TOTAL_ATTEMPTS, ge=1, description="Hard cap on attempts per task"
    )
    vendor: str = Field(
        default="generic",
        description="Vendor profile (generic, chatgpt, claude, gemini, genspark)",
    )
    history_capacity: int = Field(
        default=ERROR_HISTORY_CAPACITY, ge=1, description="Rolling failure history size"
    )
    consecutive_escalation_threshold: int | None = Field(
        default=None,
        ge=2,
        description=(
            "When set, this many consecutive failures of one category force the "
            "heavy tier. Disabled by default."
        ),
    )
    tiers: list[TierConfig] = Field(default_factory=_default_tiers)

    @model_validator(mode="after")
    def _validate_tiers(self) -> EscalationConfig:
        names = [t.tier for t in self.tiers]
        if names != list(EscalationTier):
            raise ValueError(
                "tiers must define lightweight, moderate and heavy exactly once, in order"
            )
        expected_start = 1
        for tier in self.tiers:
            if tier.range_start != expected_start:
                raise ValueError(
                    f"tier {tier.tier.value} starts at {tier.range_start}, "
                    f"expected {expected_start} (ranges must be contiguous)"
                )
            expected_start = tier.range_end + 1
        return self

    def tier_config(self, tier: EscalationTier) -> TierConfig:
        """Get the configuration of one tier."""
        for candidate in self.tiers:
            if candidate.tier is tier:
                return candidate
        raise KeyError(tier)


def _default_marker_timeouts() -> dict[str, float]:
    return {
        "deepresearch": 2400.0,
        "agent": 2400.0,
        "canvas": 600.0,
        "websearch": 480.0,
        "normal": DEFAULT_MARKER_TIMEOUT_SECONDS,
    }


def _default_aliases() -> dict[str, str]:
    return {
        "ディープリサーチ": "deepresearch",
        "deep": "deepresearch",
        "research": "deepresearch",
        "エージェント": "agent",
        "agentmode": "agent",
        "キャンバス": "canvas",
        "ウェブ検索": "websearch",
        "web": "websearch",
        "search": "websearch",
        "通常": "normal",
        "default": "normal",
    }


def _default_long_running_patterns() -> list[str]:
    return ["deep", "research", "agent", "エージェント", "ディープ", "リサーチ"]


class TimeoutConfig(BaseModel):
    """Configuration for attempt deadlines and marker staleness."""

    short_timeout_seconds: float = Field(
        default=SHORT_DISPATCH_TIMEOUT_SECONDS, gt=0, description="Ordinary job deadline"
    )
    long_timeout_seconds: float = Field(
        default=LONG_DISPATCH_TIMEOUT_SECONDS, gt=0, description="Long-running job deadline"
    )
    default_marker_timeout_seconds: float = Field(
        default=DEFAULT_MARKER_TIMEOUT_SECONDS,
        gt=0,
        description="Marker staleness timeout when the category is absent or unknown",
    )
    marker_timeouts: dict[str, float] = Field(
        default_factory=_default_marker_timeouts,
        description="Staleness timeout per normalized job category",
    )
    category_aliases: dict[str, str] = Field(
        default_factory=_default_aliases,
        description="Normalized alias -> canonical category",
    )
    long_running_patterns: list[str] = Field(
        default_factory=_default_long_running_patterns,
        description="Substrings (case-insensitive) marking a capability as long-running",
    )

    @model_validator(mode="after")
    def _validate_order(self) -> TimeoutConfig:
        if self.short_timeout_seconds > self.long_timeout_seconds:
            raise ValueError(
                f"short_timeout_seconds ({self.short_timeout_seconds}) must not exceed "
                f"long_timeout_seconds ({self.long_timeout_seconds})"
            )
        return self


class WaitConfig(BaseModel):
    """Configuration for the adaptive wait strategy."""

    check_interval_seconds: float = Field(
        default=DEFAULT_CHECK_INTERVAL_SECONDS, gt=0, description="Interval between checks"
    )
    default_max_wait_seconds: float = Field(
        default=DEFAULT_MAX_WAIT_SECONDS, gt=0, description="Maximum wait for ordinary jobs"
    )
    long_max_wait_seconds: float = Field(
        default=LONG_MAX_WAIT_SECONDS,
        gt=0,
        description="Maximum wait once a long-running job is detected",
    )
    progress_every: int = Field(
        default=PROGRESS_REPORT_EVERY, ge=1, description="Log progress every Nth check"
    )
    wait_for_busy: bool = Field(
        default=False,
        description="Wait for busy locations after each stage and re-dispatch unanswered ones",
    )


class LockConfig(BaseModel):
    """Configuration for exclusivity markers."""

    lock_token: str = Field(
        default=DEFAULT_LOCK_TOKEN,
        min_length=1,
        description="Token prefixed to every marker",
    )
    timezone: str = Field(
        default="UTC",
        description="IANA zone used to write marker timestamps and read naive ones",
    )
    reclaim_own_markers: bool = Field(
        default=False,
        description="Treat fresh markers carrying this process's owner id as reclaimable",
    )

    @field_validator("lock_token")
    @classmethod
    def _token_has_no_separator(cls, v: str) -> str:
        if MARKER_SEPARATOR in v:
            raise ValueError(f"lock_token must not contain '{MARKER_SEPARATOR}'")
        return v


def _default_placeholders() -> list[str]:
    return ["PENDING", "TODO", "N/A", "ERROR", "処理完了"]


class InputConfig(BaseModel):
    """Configuration for assembling a task's payload."""

    position_header: str = Field(
        default="Current position: {{ position }}",
        description="Jinja2 header prefixed to every payload",
    )
    separator: str = Field(default="\n\n", description="Separator between input blocks")
    template: str | None = Field(
        default=None,
        description=(
            "Jinja2 template for the whole payload. Receives position, stage, row, "
            "task_id, job_type, variant, capability, header, inputs and variables. "
            "When unset the header and inputs are joined with the separator."
        ),
    )
    variables: dict[str, Any] = Field(
        default_factory=dict,
        description="Extra template variables",
    )
    placeholders: list[str] = Field(
        default_factory=_default_placeholders,
        description="Output values that do not count as a real result",
    )
