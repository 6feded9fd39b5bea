"""Deployment lifecycle tracking and rollback automation."""

from .models import (
    Deployment,
    DeploymentMetadata,
    DeploymentStatus,
    Environment,
    HealthCheckRecord,
    RollbackEvent,
    RollbackEventStatus,
    RollbackRequest,
    parse_environment,
)

from .rollback_policy import (
    RollbackStrategy,
    RollbackThresholds,
    TriggerDecision,
    GateDecision,
    determine_strategy,
    evaluate_rollback_triggers,
    is_rollback_allowed,
)

from .tracker import DeploymentTracker
from .rollback_controller import RollbackController, RollbackOutcome

__all__ = [
    # Models
    "Deployment",
    "DeploymentMetadata",
    "DeploymentStatus",
    "Environment",
    "HealthCheckRecord",
    "RollbackEvent",
    "RollbackEventStatus",
    "RollbackRequest",
    "parse_environment",
    # Rollback policy
    "RollbackStrategy",
    "RollbackThresholds",
    "TriggerDecision",
    "GateDecision",
    "determine_strategy",
    "evaluate_rollback_triggers",
    "is_rollback_allowed",
    # Components
    "DeploymentTracker",
    "RollbackController",
    "RollbackOutcome",
]
