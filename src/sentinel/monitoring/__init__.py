"""Monitoring components: alerts, performance and cost tracking."""

from .alerts import Alert, AlertLog

from .performance import (
    PerformanceTracker,
    PerformanceConfig,
    CostCalculator,
    ResourceBuffer,
    DeploymentPerformance,
    PhaseRecord,
    PipelineRecord,
    PerformanceSample,
)

__all__ = [
    # Alerts
    "Alert",
    "AlertLog",
    # Performance tracking
    "PerformanceTracker",
    "PerformanceConfig",
    "CostCalculator",
    "ResourceBuffer",
    "DeploymentPerformance",
    "PhaseRecord",
    "PipelineRecord",
    "PerformanceSample",
]
