"""Tiered retry escalation.

Maps a classified failure and the attempt number to a tier, a delay and
a recovery action:

    | Tier | Attempts | Delays (s) | Action |
    |------|----------|------------|--------|
    | lightweight | 1-5 | 1, 2, 5, 10, 15 | retry on the same worker |
    | moderate | 6-8 | 30, 60, 120 | refresh the worker |
    | heavy | 9-20 | 300, 900, 1800, 3600, 7200 | recreate the worker |

Rate limits and expired auth/session force the heavy tier from the first
failure. A task is exhausted once it reaches the engine-wide attempt cap
or the vendor's cap for the failing category.

Example usage:
    engine = RetryEscalationEngine(vendor="claude")
    decision = engine.on_failure(exc, attempt=3)
    if decision.exhausted:
        ...  # give up
    else:
        await asyncio.sleep(decision.delay_seconds)
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sheetrelay.core.config import EscalationConfig, TierConfig
from sheetrelay.core.constants import TRUNCATE_ERROR_MESSAGE_CHARS
from sheetrelay.core.errors import (
    VENDOR_PROFILES,
    ClassifiedFailure,
    ErrorClassifier,
    EscalationTier,
    FailureCategory,
    RecoveryAction,
)
from sheetrelay.core.logging import get_logger
from sheetrelay.core.models import RetryMetrics

_logger = get_logger("escalation")


@dataclass
class FailureRecord:
    """One failed attempt in a retry history.

    Attributes:
        timestamp: When the failure was recorded (UTC).
        category: Classified failure category.
        message: Failure description.
        attempt: Attempt number (1-indexed).
        monotonic_time: Monotonic timestamp for interval calculations.
    """

    timestamp: datetime
    category: FailureCategory
    message: str
    attempt: int
    monotonic_time: float = field(default_factory=time.monotonic)

    @classmethod
    def from_classified(cls, failure: ClassifiedFailure, attempt: int) -> FailureRecord:
        return cls(
            timestamp=datetime.now(UTC),
            category=failure.category,
            message=failure.message,
            attempt=attempt,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "category": self.category.value,
            "message": self.message[:TRUNCATE_ERROR_MESSAGE_CHARS],
            "attempt": self.attempt,
        }


@dataclass
class RetryState:
    """Bounded failure history, consecutive-failure tracking and metrics.

    Attributes:
        capacity: Maximum history entries kept; the oldest are evicted.
        history: Recent failures, oldest first.
        consecutive_error_count: Consecutive failures of ``last_category``.
        last_category: Category of the most recent failure.
        metrics: Attempt, category and tier counters.
    """

    capacity: int = 50
    history: deque[FailureRecord] = field(init=False)
    consecutive_error_count: int = 0
    last_category: FailureCategory | None = None
    metrics: RetryMetrics = field(default_factory=RetryMetrics)

    def __post_init__(self) -> None:
        self.history = deque(maxlen=self.capacity)

    def record_failure(self, record: FailureRecord) -> None:
        self.history.append(record)
        if record.category is self.last_category:
            self.consecutive_error_count += 1
        else:
            self.consecutive_error_count = 1
        self.last_category = record.category
        self.metrics.total_attempts += 1
        key = record.category.value
        self.metrics.category_counts[key] = self.metrics.category_counts.get(key, 0) + 1

    def record_success(self) -> None:
        self.consecutive_error_count = 0
        self.last_category = None
        self.metrics.total_attempts += 1
        self.metrics.successful_attempts += 1

    def record_escalation(self, tier: EscalationTier) -> None:
        key = tier.value
        self.metrics.tier_counts[key] = self.metrics.tier_counts.get(key, 0) + 1

    def diagnostics(self) -> list[dict[str, Any]]:
        """Serialized history, oldest first."""
        return [r.to_dict() for r in self.history]


@dataclass(frozen=True)
class EscalationDecision:
    """What to do after a failed attempt.

    Attributes:
        tier: Escalation tier selected.
        delay_seconds: Wait before the next attempt.
        action: Recovery action to apply to the bound worker.
        exhausted: True when no further attempt should be made.
        category: Category of the failure that produced the decision.
        reason: Human-readable explanation.
    """

    tier: EscalationTier
    delay_seconds: float
    action: RecoveryAction
    exhausted: bool = False
    category: FailureCategory | None = None
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "tier": self.tier.value,
            "delay_seconds": self.delay_seconds,
            "action": self.action.value,
            "exhausted": self.exhausted,
            "category": self.category.value if self.category else None,
            "reason": self.reason,
        }


class RetryEscalationEngine:
    """Classifies failures and decides tier, delay, action or exhaustion.

    One engine serves one task invocation; its ``RetryState`` is merged
    into the run's metrics by the executor when the task finishes.
    """

    def __init__(
        self,
        config: EscalationConfig | None = None,
        vendor: str | None = None,
        classifier: ErrorClassifier | None = None,
    ) -> None:
        self.config = config or EscalationConfig()
        if classifier is None:
            name = vendor if vendor and vendor.lower() in VENDOR_PROFILES else self.config.vendor
            classifier = ErrorClassifier(name)
        self.classifier = classifier
        self.state = RetryState(capacity=self.config.history_capacity)

    @property
    def vendor(self) -> str:
        return self.classifier.profile.name

    def classify(
        self,
        failure: BaseException | str,
        context: Mapping[str, Any] | None = None,
    ) -> ClassifiedFailure:
        """Classify a failure with this engine's vendor profile."""
        return self.classifier.classify(failure, context)

    def tier_for(self, attempt: int) -> TierConfig:
        """Tier whose attempt range covers ``attempt`` (heavy beyond the last range)."""
        for tier in self.config.tiers:
            if tier.range_start <= attempt <= tier.range_end:
                return tier
        return self.config.tier_config(EscalationTier.HEAVY)

    def escalate(
        self,
        attempt: int,
        category: FailureCategory,
        force_heavy: bool = False,
    ) -> EscalationDecision:
        """Pure lookup of tier, delay and action for a failed attempt.

        Args:
            attempt: Attempt number that failed (1-indexed)
            category: Classified failure category
            force_heavy: Escalate to heavy regardless of category

        Returns:
            EscalationDecision (never exhausted; see ``on_failure``)
        """
        if force_heavy or category.forces_heavy:
            tier = self.config.tier_config(EscalationTier.HEAVY)
            reason = f"{category.value} forces heavy tier"
        else:
            tier = self.tier_for(attempt)
            reason = f"attempt {attempt} in {tier.tier.value} tier"
        index = min(max(attempt - tier.range_start, 0), len(tier.delays) - 1)
        return EscalationDecision(
            tier=tier.tier,
            delay_seconds=tier.delays[index],
            action=tier.action,
            category=category,
            reason=reason,
        )

    def max_attempts_for(self, category: FailureCategory) -> int:
        """Attempt cap for a category: the vendor cap, bounded by the engine cap."""
        vendor_cap = self.classifier.profile.max_retries_for(category)
        if vendor_cap is None:
            return self.config.max_attempts
        return min(vendor_cap, self.config.max_attempts)

    def on_failure(
        self,
        failure: BaseException | str | ClassifiedFailure,
        attempt: int,
        context: Mapping[str, Any] | None = None,
    ) -> EscalationDecision:
        """Record a failed attempt and decide what happens next.

        Args:
            failure: Exception, error string or an already-classified failure
            attempt: Attempt number that failed (1-indexed)
            context: Extra fields for log entries

        Returns:
            EscalationDecision; ``exhausted`` when the task should give up
        """
        classified = (
            failure
            if isinstance(failure, ClassifiedFailure)
            else self.classify(failure, context)
        )
        self.state.record_failure(FailureRecord.from_classified(classified, attempt))

        threshold = self.config.consecutive_escalation_threshold
        repeated = threshold is not None and self.state.consecutive_error_count >= threshold
        decision = self.escalate(attempt, classified.category, force_heavy=repeated)

        cap = self.max_attempts_for(classified.category)
        if not classified.category.retriable or attempt >= cap:
            reason = (
                f"{classified.category.value} is not retriable"
                if not classified.category.retriable
                else f"attempt {attempt} reached cap {cap} for {classified.category.value}"
            )
            _logger.warning(
                "escalation.exhausted",
                attempt=attempt,
                category=classified.category.value,
                vendor=self.vendor,
                cap=cap,
                **dict(context or {}),
            )
            return EscalationDecision(
                tier=decision.tier,
                delay_seconds=0.0,
                action=decision.action,
                exhausted=True,
                category=classified.category,
                reason=reason,
            )

        self.state.record_escalation(decision.tier)
        _logger.info(
            "escalation.decision",
            attempt=attempt,
            category=classified.category.value,
            tier=decision.tier.value,
            delay_seconds=decision.delay_seconds,
            action=decision.action.value,
            consecutive=self.state.consecutive_error_count,
            **dict(context or {}),
        )
        return decision

    def on_success(self) -> None:
        """Record a successful attempt."""
        self.state.record_success()

    def snapshot(self) -> dict[str, Any]:
        """Metrics with success rate, plus the consecutive-failure state."""
        return {
            **self.state.metrics.to_dict(),
            "consecutive_error_count": self.state.consecutive_error_count,
            "last_category": self.state.last_category.value if self.state.last_category else None,
            "history_size": len(self.state.history),
        }


__all__ = [
    "EscalationDecision",
    "FailureRecord",
    "RetryEscalationEngine",
    "RetryState",
]
