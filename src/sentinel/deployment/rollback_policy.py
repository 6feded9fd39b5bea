"""Rollback policy evaluation.

Decides when a deployment needs rolling back, which strategy to use, and
whether the controller's cooldown / hourly cap allows a new rollback to
start. Every function here is pure so the decisions can be tested without
a clock or a network.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Sequence

from src.sentinel.deployment.models import HealthCheckRecord


class RollbackStrategy(str, Enum):
    IMMEDIATE = "immediate"
    CANARY = "canary"
    BLUE_GREEN = "blue_green"


@dataclass(frozen=True)
class StrategyDescriptor:
    name: str
    description: str
    timeout_seconds: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "timeout_seconds": self.timeout_seconds,
        }


STRATEGIES: Dict[RollbackStrategy, StrategyDescriptor] = {
    RollbackStrategy.IMMEDIATE: StrategyDescriptor(
        name="Immediate Rollback",
        description="Redeploy the previous version through the CI pipeline and validate health",
        timeout_seconds=300,
    ),
    RollbackStrategy.CANARY: StrategyDescriptor(
        name="Canary Rollback",
        description="Shift traffic back to the previous version step by step, validating each step",
        timeout_seconds=600,
    ),
    RollbackStrategy.BLUE_GREEN: StrategyDescriptor(
        name="Blue-Green Rollback",
        description="Switch the router back to the previous slot and validate health",
        timeout_seconds=180,
    ),
}


@dataclass
class RollbackThresholds:
    """Limits that make the deployment tracker request a rollback."""
    health_check_failures: int = 3
    response_time_ms: float = 5000.0
    window: int = 10

    def __post_init__(self):
        """Validate thresholds are reasonable."""
        if self.health_check_failures < 1:
            raise ValueError("Health check failure threshold must be >= 1")
        if self.response_time_ms <= 0:
            raise ValueError("Response time threshold must be > 0")
        if self.window < self.health_check_failures:
            raise ValueError("Trigger window must hold at least the failure threshold")


@dataclass
class TriggerDecision:
    """Why a rollback was requested."""
    reason: str
    details: str
    severity: str
    failures: int
    window_size: int
    average_response_time_ms: Optional[float] = None

    @property
    def summary(self) -> str:
        return f"{self.reason}: {self.details}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reason": self.reason,
            "details": self.details,
            "severity": self.severity,
            "failures": self.failures,
            "window_size": self.window_size,
            "average_response_time_ms": self.average_response_time_ms,
        }


def evaluate_rollback_triggers(
    health_checks: Sequence[HealthCheckRecord],
    thresholds: Optional[RollbackThresholds] = None,
) -> Optional[TriggerDecision]:
    """Inspect the trailing window of health checks.

    Failures are counted first; only when they stay under the threshold is
    the mean latency of the successful checks compared to its limit.

    Args:
        health_checks: All checks recorded for the deployment, oldest first
        thresholds: Trigger limits

    Returns:
        A TriggerDecision, or None when no trigger fires
    """
    thresholds = thresholds or RollbackThresholds()
    window = list(health_checks)[-thresholds.window:]

    failures = sum(1 for check in window if not check.success)
    if failures >= thresholds.health_check_failures:
        return TriggerDecision(
            reason="health_check_failures",
            details=f"{failures} health check failures in last {len(window)} checks",
            severity="critical",
            failures=failures,
            window_size=len(window),
        )

    response_times = [
        check.response_time_ms
        for check in window
        if check.success and check.response_time_ms
    ]
    if response_times:
        average = sum(response_times) / len(response_times)
        if average > thresholds.response_time_ms:
            return TriggerDecision(
                reason="high_response_time",
                details=(
                    f"Average response time {average:.0f}ms exceeds "
                    f"threshold {thresholds.response_time_ms:.0f}ms"
                ),
                severity="warning",
                failures=failures,
                window_size=len(window),
                average_response_time_ms=average,
            )

    return None


def determine_strategy(reason: str, severity: str = "normal") -> RollbackStrategy:
    """Pick a rollback strategy from the trigger reason and severity."""
    text = (reason or "").lower()
    if severity == "critical" or "crash" in text or "health" in text:
        return RollbackStrategy.IMMEDIATE
    if "performance" in text or "response" in text:
        return RollbackStrategy.CANARY
    return RollbackStrategy.BLUE_GREEN


@dataclass
class GateDecision:
    allowed: bool
    reason: Optional[str] = None
    retry_after_seconds: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "retry_after_seconds": self.retry_after_seconds,
        }


def is_rollback_allowed(
    now: datetime,
    cooldown_until: Optional[datetime],
    recent_rollbacks: Iterable[datetime],
    max_per_hour: int,
) -> GateDecision:
    """Cooldown and hourly cap check, evaluated against ``now`` on every call.

    Args:
        now: Current time
        cooldown_until: End of the cooldown armed by the last rollback
        recent_rollbacks: Start times of previous rollbacks
        max_per_hour: Maximum rollbacks in any trailing 60 minutes
    """
    if cooldown_until is not None and now < cooldown_until:
        remaining = (cooldown_until - now).total_seconds()
        return GateDecision(
            allowed=False,
            reason=f"Rollback in cooldown ({int(remaining)}s remaining)",
            retry_after_seconds=remaining,
        )

    hour_ago = now - timedelta(hours=1)
    in_last_hour = sorted(ts for ts in recent_rollbacks if ts > hour_ago)
    if len(in_last_hour) >= max_per_hour:
        retry_after = (in_last_hour[0] + timedelta(hours=1) - now).total_seconds()
        return GateDecision(
            allowed=False,
            reason=(
                f"Rollback rate limit exceeded ({len(in_last_hour)} rollbacks "
                f"in the last hour, max {max_per_hour})"
            ),
            retry_after_seconds=max(0.0, retry_after),
        )

    return GateDecision(allowed=True)
