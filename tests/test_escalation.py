"""Tests for tiered retry escalation.

Tests cover:
- Tier lookup and delay clamping
- Forced heavy escalation for rate limits and expired auth/session
- Exhaustion at the engine cap and at vendor caps
- Consecutive-failure tracking and the optional escalation threshold
- Bounded history and metrics
"""

import pytest

from sheetrelay.core.config import EscalationConfig
from sheetrelay.core.errors import (
    ClassifiedFailure,
    EscalationTier,
    FailureCategory,
    RecoveryAction,
    WorkerError,
)
from sheetrelay.execution.escalation import (
    EscalationDecision,
    RetryEscalationEngine,
    RetryState,
)

# ============================================================================
# Pure Escalation Lookup
# ============================================================================


class TestEscalate:
    """Tests for RetryEscalationEngine.escalate."""

    @pytest.mark.parametrize(
        ("attempt", "tier", "delay", "action"),
        [
            (1, EscalationTier.LIGHTWEIGHT, 1.0, RecoveryAction.RETRY_SAME_WORKER),
            (3, EscalationTier.LIGHTWEIGHT, 5.0, RecoveryAction.RETRY_SAME_WORKER),
            (5, EscalationTier.LIGHTWEIGHT, 15.0, RecoveryAction.RETRY_SAME_WORKER),
            (6, EscalationTier.MODERATE, 30.0, RecoveryAction.REFRESH_WORKER),
            (8, EscalationTier.MODERATE, 120.0, RecoveryAction.REFRESH_WORKER),
            (9, EscalationTier.HEAVY, 300.0, RecoveryAction.RECREATE_WORKER),
            (13, EscalationTier.HEAVY, 7200.0, RecoveryAction.RECREATE_WORKER),
            (20, EscalationTier.HEAVY, 7200.0, RecoveryAction.RECREATE_WORKER),
        ],
    )
    def test_tier_table(
        self,
        attempt: int,
        tier: EscalationTier,
        delay: float,
        action: RecoveryAction,
    ) -> None:
        """Test the tier, delay and action for each attempt of a network failure."""
        decision = RetryEscalationEngine().escalate(attempt, FailureCategory.NETWORK)

        assert decision.tier is tier
        assert decision.delay_seconds == delay
        assert decision.action is action
        assert decision.exhausted is False

    def test_network_attempt_six_is_moderate(self) -> None:
        """Test network failure on attempt 6 → moderate, 30s, refresh."""
        decision = RetryEscalationEngine().escalate(6, FailureCategory.NETWORK)

        assert (decision.tier, decision.delay_seconds, decision.action) == (
            EscalationTier.MODERATE,
            30.0,
            RecoveryAction.REFRESH_WORKER,
        )

    @pytest.mark.parametrize(
        "category",
        [
            FailureCategory.RATE_LIMIT,
            FailureCategory.AUTH_EXPIRED,
            FailureCategory.SESSION_EXPIRED,
        ],
    )
    def test_forced_heavy_on_first_attempt(self, category: FailureCategory) -> None:
        """Test forced-heavy categories clamp to the first heavy delay."""
        decision = RetryEscalationEngine().escalate(1, category)

        assert decision.tier is EscalationTier.HEAVY
        assert decision.delay_seconds == 300.0
        assert decision.action is RecoveryAction.RECREATE_WORKER

    def test_escalate_is_pure(self) -> None:
        """Test that escalate does not touch retry state."""
        engine = RetryEscalationEngine()

        first = engine.escalate(4, FailureCategory.GENERAL)
        second = engine.escalate(4, FailureCategory.GENERAL)

        assert first == second
        assert engine.state.metrics.total_attempts == 0

    def test_beyond_last_range_uses_heavy(self) -> None:
        """Test attempts past the configured ranges stay heavy."""
        engine = RetryEscalationEngine(EscalationConfig(max_attempts=30))

        assert engine.tier_for(25).tier is EscalationTier.HEAVY


# ============================================================================
# on_failure / Exhaustion
# ============================================================================


class TestOnFailure:
    """Tests for RetryEscalationEngine.on_failure."""

    def test_rate_limit_first_failure(self) -> None:
        """Test rate limit at attempt 1 → heavy, 300s, recreate."""
        engine = RetryEscalationEngine()

        decision = engine.on_failure(RuntimeError("429 Too Many Requests"), attempt=1)

        assert decision.category is FailureCategory.RATE_LIMIT
        assert decision.tier is EscalationTier.HEAVY
        assert decision.delay_seconds == 300.0
        assert decision.action is RecoveryAction.RECREATE_WORKER

    def test_exhausted_at_engine_cap(self) -> None:
        """Test that the 20th failure exhausts a generic task."""
        engine = RetryEscalationEngine()

        decisions = [engine.on_failure("something odd", attempt=n) for n in range(1, 21)]

        assert all(not d.exhausted for d in decisions[:19])
        assert decisions[-1].exhausted is True
        assert decisions[-1].category is FailureCategory.GENERAL
        assert engine.state.metrics.total_attempts == 20

    def test_vendor_cap_exhausts_early(self) -> None:
        """Test that chatgpt gives up on auth failures after 5 attempts."""
        engine = RetryEscalationEngine(vendor="chatgpt")

        decisions = [engine.on_failure("Please log in", attempt=n) for n in range(1, 6)]

        assert [d.exhausted for d in decisions] == [False, False, False, False, True]
        assert engine.max_attempts_for(FailureCategory.AUTH_EXPIRED) == 5

    def test_vendor_cap_bounded_by_engine_cap(self) -> None:
        """Test that a vendor cap above max_attempts is clamped."""
        engine = RetryEscalationEngine(EscalationConfig(max_attempts=3), vendor="claude")

        assert engine.max_attempts_for(FailureCategory.FUNCTIONAL) == 3

    def test_unknown_vendor_uses_configured_vendor(self) -> None:
        """Test that an unknown job type falls back to the configured profile."""
        engine = RetryEscalationEngine(EscalationConfig(vendor="gemini"), vendor="custom")

        assert engine.vendor == "gemini"

    def test_timeout_is_terminal(self) -> None:
        """Test that a timeout failure is exhausted immediately."""
        engine = RetryEscalationEngine()
        failure = ClassifiedFailure(category=FailureCategory.TIMEOUT, message="deadline")

        decision = engine.on_failure(failure, attempt=1)

        assert decision.exhausted is True
        assert decision.category is FailureCategory.TIMEOUT

    def test_category_hint_is_used(self) -> None:
        """Test that WorkerError hints drive the decision."""
        engine = RetryEscalationEngine()

        decision = engine.on_failure(
            WorkerError("gone", FailureCategory.SESSION_EXPIRED), attempt=2
        )

        assert decision.tier is EscalationTier.HEAVY

    def test_decision_to_dict(self) -> None:
        """Test decision serialization."""
        decision = EscalationDecision(
            tier=EscalationTier.MODERATE,
            delay_seconds=60.0,
            action=RecoveryAction.REFRESH_WORKER,
            category=FailureCategory.NETWORK,
        )

        data = decision.to_dict()

        assert data["tier"] == "moderate"
        assert data["action"] == "refresh-worker"
        assert data["category"] == "network"


# ============================================================================
# Consecutive Failures
# ============================================================================


class TestConsecutiveFailures:
    """Tests for consecutive-failure tracking."""

    def test_count_increments_on_same_category(self) -> None:
        engine = RetryEscalationEngine()

        engine.on_failure("Failed to fetch", attempt=1)
        engine.on_failure("Failed to fetch", attempt=2)
        engine.on_failure("Failed to fetch", attempt=3)

        assert engine.state.consecutive_error_count == 3
        assert engine.state.last_category is FailureCategory.NETWORK

    def test_count_resets_to_one_on_category_change(self) -> None:
        engine = RetryEscalationEngine()

        engine.on_failure("Failed to fetch", attempt=1)
        engine.on_failure("Failed to fetch", attempt=2)
        engine.on_failure("selector missing", attempt=3)

        assert engine.state.consecutive_error_count == 1
        assert engine.state.last_category is FailureCategory.INTERFACE_TIMING

    def test_success_resets_to_zero(self) -> None:
        engine = RetryEscalationEngine()

        engine.on_failure("Failed to fetch", attempt=1)
        engine.on_success()

        assert engine.state.consecutive_error_count == 0
        assert engine.state.metrics.successful_attempts == 1
        assert engine.state.metrics.total_attempts == 2

    def test_threshold_disabled_by_default(self) -> None:
        """Test that repeated failures stay in their tier without a threshold."""
        engine = RetryEscalationEngine()

        decisions = [engine.on_failure("Failed to fetch", attempt=n) for n in range(1, 6)]

        assert all(d.tier is EscalationTier.LIGHTWEIGHT for d in decisions)

    def test_threshold_forces_heavy(self) -> None:
        """Test that the opt-in threshold forces heavy on the Nth repeat."""
        engine = RetryEscalationEngine(EscalationConfig(consecutive_escalation_threshold=3))

        decisions = [engine.on_failure("Failed to fetch", attempt=n) for n in range(1, 4)]

        assert decisions[0].tier is EscalationTier.LIGHTWEIGHT
        assert decisions[1].tier is EscalationTier.LIGHTWEIGHT
        assert decisions[2].tier is EscalationTier.HEAVY
        assert decisions[2].delay_seconds == 300.0


# ============================================================================
# RetryState and Metrics
# ============================================================================


class TestRetryState:
    """Tests for history bounds and metrics."""

    def test_history_evicts_oldest(self) -> None:
        engine = RetryEscalationEngine(EscalationConfig(history_capacity=3))

        for n in range(1, 6):
            engine.on_failure(f"failure {n}", attempt=n)

        assert len(engine.state.history) == 3
        assert [r.attempt for r in engine.state.history] == [3, 4, 5]

    def test_default_capacity(self) -> None:
        assert RetryState().history.maxlen == 50

    def test_metrics_counts(self) -> None:
        engine = RetryEscalationEngine()

        engine.on_failure("429", attempt=1)
        engine.on_failure("Failed to fetch", attempt=2)
        engine.on_success()

        metrics = engine.state.metrics
        assert metrics.category_counts == {"rate_limit": 1, "network": 1}
        assert metrics.tier_counts == {"heavy": 1, "lightweight": 1}
        assert metrics.total_attempts == 3

    def test_snapshot_has_success_rate(self) -> None:
        engine = RetryEscalationEngine()

        engine.on_failure("Failed to fetch", attempt=1)
        engine.on_success()
        snapshot = engine.snapshot()

        assert snapshot["success_rate"] == 50.0
        assert snapshot["consecutive_error_count"] == 0
        assert snapshot["history_size"] == 1

    def test_diagnostics_serialized(self) -> None:
        engine = RetryEscalationEngine()

        engine.on_failure("Failed to fetch", attempt=1)
        diagnostics = engine.state.diagnostics()

        assert diagnostics[0]["category"] == "network"
        assert diagnostics[0]["attempt"] == 1
        assert "timestamp" in diagnostics[0]
