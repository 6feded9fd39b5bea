"""Dependency health monitoring."""

from .models import DependencyCheckResult, HealthStatus, ReadinessStatus
from .checks import DependencyCheck, build_default_checks
from .monitor import (
    HealthMonitor,
    READINESS_CRITICAL,
    calculate_overall_health,
    calculate_readiness_status,
)

__all__ = [
    "DependencyCheckResult",
    "HealthStatus",
    "ReadinessStatus",
    "DependencyCheck",
    "build_default_checks",
    "HealthMonitor",
    "READINESS_CRITICAL",
    "calculate_overall_health",
    "calculate_readiness_status",
]
