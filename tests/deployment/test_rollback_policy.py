"""Unit tests for rollback policy decisions.

Tests cover trigger evaluation over the health check window, strategy
selection and the cooldown / hourly-cap gate.
"""
from datetime import datetime, timedelta, timezone

import pytest

from src.sentinel.deployment.models import HealthCheckRecord
from src.sentinel.deployment.rollback_policy import (
    RollbackStrategy,
    RollbackThresholds,
    determine_strategy,
    evaluate_rollback_triggers,
    is_rollback_allowed,
)

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def checks(*outcomes, response_time_ms=120.0):
    """Build health check records from a sequence of True/False outcomes."""
    return [
        HealthCheckRecord(
            endpoint="/health",
            success=ok,
            response_time_ms=response_time_ms,
            timestamp=NOW + timedelta(seconds=30 * i),
            error=None if ok else "HTTP 503",
        )
        for i, ok in enumerate(outcomes)
    ]


class TestRollbackThresholds:
    """Test threshold validation."""

    def test_defaults(self):
        thresholds = RollbackThresholds()
        assert thresholds.health_check_failures == 3
        assert thresholds.response_time_ms == 5000.0
        assert thresholds.window == 10

    def test_invalid_failure_threshold(self):
        with pytest.raises(ValueError, match="must be >= 1"):
            RollbackThresholds(health_check_failures=0)

    def test_invalid_response_time(self):
        with pytest.raises(ValueError, match="must be > 0"):
            RollbackThresholds(response_time_ms=0)

    def test_window_smaller_than_threshold(self):
        with pytest.raises(ValueError, match="window"):
            RollbackThresholds(health_check_failures=5, window=3)


class TestTriggerEvaluation:
    """Test automatic rollback triggers."""

    def test_no_checks_no_trigger(self):
        assert evaluate_rollback_triggers([]) is None

    def test_below_failure_threshold(self):
        assert evaluate_rollback_triggers(checks(False, True, False)) is None

    def test_failure_threshold_reached(self):
        """Test that three failures in the window trigger a critical rollback."""
        decision = evaluate_rollback_triggers(checks(True, False, False, False))

        assert decision is not None
        assert decision.reason == "health_check_failures"
        assert decision.severity == "critical"
        assert decision.failures == 3
        assert decision.details == "3 health check failures in last 4 checks"

    def test_old_failures_leave_the_window(self):
        """Test that only the trailing window is considered."""
        history = checks(False, False, False, *([True] * 10))
        assert evaluate_rollback_triggers(history) is None

    def test_high_response_time(self):
        decision = evaluate_rollback_triggers(checks(True, True, True, response_time_ms=6500.0))

        assert decision.reason == "high_response_time"
        assert decision.severity == "warning"
        assert decision.average_response_time_ms == 6500.0

    def test_failed_checks_excluded_from_latency(self):
        """Test that latency is averaged over successful checks only."""
        history = checks(True, True, response_time_ms=100.0)
        history += checks(False, response_time_ms=60000.0)
        assert evaluate_rollback_triggers(history) is None

    def test_failures_take_precedence_over_latency(self):
        history = checks(False, False, False, True, response_time_ms=9000.0)
        assert evaluate_rollback_triggers(history).reason == "health_check_failures"

    def test_custom_thresholds(self):
        thresholds = RollbackThresholds(health_check_failures=1, window=1)
        decision = evaluate_rollback_triggers(checks(True, False), thresholds)
        assert decision.window_size == 1


class TestStrategySelection:
    """Test strategy selection from reason and severity."""

    @pytest.mark.parametrize("reason,severity,expected", [
        ("health_check_failures: 3 failures", "critical", RollbackStrategy.IMMEDIATE),
        ("Manual rollback: bad config", "critical", RollbackStrategy.IMMEDIATE),
        ("Process crash loop", "normal", RollbackStrategy.IMMEDIATE),
        ("Health endpoint failing", "normal", RollbackStrategy.IMMEDIATE),
        ("high_response_time: 6500ms", "warning", RollbackStrategy.CANARY),
        ("Performance regression", "normal", RollbackStrategy.CANARY),
        ("Manual rollback: bad config", "normal", RollbackStrategy.BLUE_GREEN),
        ("", "normal", RollbackStrategy.BLUE_GREEN),
    ])
    def test_determine_strategy(self, reason, severity, expected):
        assert determine_strategy(reason, severity) == expected


class TestRollbackGate:
    """Test the cooldown and hourly cap."""

    def test_allowed_without_history(self):
        decision = is_rollback_allowed(NOW, None, [], max_per_hour=3)
        assert decision.allowed
        assert decision.reason is None

    def test_cooldown_blocks(self):
        decision = is_rollback_allowed(NOW, NOW + timedelta(seconds=480), [], max_per_hour=3)

        assert not decision.allowed
        assert decision.reason == "Rollback in cooldown (480s remaining)"
        assert decision.retry_after_seconds == 480

    def test_expired_cooldown_allows(self):
        decision = is_rollback_allowed(NOW, NOW - timedelta(seconds=1), [], max_per_hour=3)
        assert decision.allowed

    def test_hourly_cap(self):
        """Test that three rollbacks in the trailing hour block a fourth."""
        starts = [NOW - timedelta(minutes=m) for m in (50, 30, 15)]
        decision = is_rollback_allowed(NOW, None, starts, max_per_hour=3)

        assert not decision.allowed
        assert "rate limit exceeded" in decision.reason
        # The oldest rollback leaves the window in ten minutes
        assert decision.retry_after_seconds == pytest.approx(600)

    def test_rollbacks_older_than_an_hour_ignored(self):
        starts = [NOW - timedelta(minutes=m) for m in (90, 75, 61)]
        assert is_rollback_allowed(NOW, None, starts, max_per_hour=3).allowed
