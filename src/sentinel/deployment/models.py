"""Deployment lifecycle and rollback records."""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from src.sentinel.core.clock import elapsed_ms, from_iso, to_iso


class Environment(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


_ENVIRONMENT_ALIASES = {
    "development": Environment.DEV,
    "dev": Environment.DEV,
    "staging": Environment.STAGING,
    "stage": Environment.STAGING,
    "production": Environment.PROD,
    "prod": Environment.PROD,
}


def parse_environment(value: str) -> Environment:
    """Normalize an environment name (``production`` -> ``prod``)."""
    try:
        return _ENVIRONMENT_ALIASES[str(value).strip().lower()]
    except KeyError:
        raise ValueError(f"Unknown environment: {value}") from None


class DeploymentStatus(str, Enum):
    DEPLOYING = "deploying"
    SUCCESSFUL = "successful"
    FAILED = "failed"


def new_deployment_id() -> str:
    return f"deploy-{uuid.uuid4().hex[:12]}"


@dataclass
class DeploymentMetadata:
    """Identity of a release attempt, as reported by the CI pipeline."""
    environment: Environment = Environment.DEV
    version: str = "unknown"
    image_tag: str = "unknown"
    commit_sha: str = "unknown"
    branch: str = "unknown"
    actor: str = "unknown"
    trigger_id: str = "unknown"
    build_timestamp: str = "unknown"


@dataclass
class HealthCheckRecord:
    endpoint: str
    success: bool
    response_time_ms: Optional[float]
    timestamp: datetime
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "endpoint": self.endpoint,
            "success": self.success,
            "response_time_ms": self.response_time_ms,
            "error": self.error,
            "timestamp": to_iso(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HealthCheckRecord":
        return cls(
            endpoint=data.get("endpoint", ""),
            success=bool(data.get("success")),
            response_time_ms=data.get("response_time_ms"),
            timestamp=from_iso(data["timestamp"]),
            error=data.get("error"),
        )


@dataclass
class Deployment:
    """One release attempt: ``deploying`` until it becomes successful or failed."""
    id: str
    metadata: DeploymentMetadata
    start_time: datetime
    status: DeploymentStatus = DeploymentStatus.DEPLOYING
    end_time: Optional[datetime] = None
    health_checks: List[HealthCheckRecord] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    failure_reason: Optional[str] = None
    rollback_triggered: bool = False
    rollback_reason: Optional[str] = None
    rollback_details: Optional[str] = None
    rollback_timestamp: Optional[datetime] = None
    auto_complete_at: Optional[datetime] = None

    @property
    def environment(self) -> Environment:
        return self.metadata.environment

    @property
    def is_terminal(self) -> bool:
        return self.status != DeploymentStatus.DEPLOYING

    @property
    def duration_ms(self) -> Optional[int]:
        if self.end_time is None:
            return None
        return elapsed_ms(self.start_time, self.end_time)

    def to_dict(self) -> Dict[str, Any]:
        m = self.metadata
        return {
            "id": self.id,
            "environment": m.environment.value,
            "version": m.version,
            "image_tag": m.image_tag,
            "commit_sha": m.commit_sha,
            "branch": m.branch,
            "actor": m.actor,
            "trigger_id": m.trigger_id,
            "build_timestamp": m.build_timestamp,
            "status": self.status.value,
            "start_time": to_iso(self.start_time),
            "end_time": to_iso(self.end_time),
            "duration_ms": self.duration_ms,
            "health_checks": [h.to_dict() for h in self.health_checks],
            "errors": list(self.errors),
            "failure_reason": self.failure_reason,
            "rollback_triggered": self.rollback_triggered,
            "rollback_reason": self.rollback_reason,
            "rollback_details": self.rollback_details,
            "rollback_timestamp": to_iso(self.rollback_timestamp),
            "auto_complete_at": to_iso(self.auto_complete_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Deployment":
        metadata = DeploymentMetadata(
            environment=parse_environment(data.get("environment", "dev")),
            version=data.get("version", "unknown"),
            image_tag=data.get("image_tag", "unknown"),
            commit_sha=data.get("commit_sha", "unknown"),
            branch=data.get("branch", "unknown"),
            actor=data.get("actor", "unknown"),
            trigger_id=data.get("trigger_id", "unknown"),
            build_timestamp=data.get("build_timestamp", "unknown"),
        )
        return cls(
            id=data["id"],
            metadata=metadata,
            start_time=from_iso(data["start_time"]),
            status=DeploymentStatus(data.get("status", "deploying")),
            end_time=from_iso(data.get("end_time")),
            health_checks=[HealthCheckRecord.from_dict(h) for h in data.get("health_checks", [])],
            errors=list(data.get("errors", [])),
            failure_reason=data.get("failure_reason"),
            rollback_triggered=bool(data.get("rollback_triggered", False)),
            rollback_reason=data.get("rollback_reason"),
            rollback_details=data.get("rollback_details"),
            rollback_timestamp=from_iso(data.get("rollback_timestamp")),
            auto_complete_at=from_iso(data.get("auto_complete_at")),
        )


@dataclass
class DeploymentMetrics:
    total_deployments: int = 0
    successful_deployments: int = 0
    failed_deployments: int = 0
    rollbacks: int = 0
    average_deployment_time_ms: float = 0.0
    last_deployment_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_deployments": self.total_deployments,
            "successful_deployments": self.successful_deployments,
            "failed_deployments": self.failed_deployments,
            "rollbacks": self.rollbacks,
            "average_deployment_time_ms": self.average_deployment_time_ms,
            "last_deployment_time": to_iso(self.last_deployment_time),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentMetrics":
        return cls(
            total_deployments=int(data.get("total_deployments", 0)),
            successful_deployments=int(data.get("successful_deployments", 0)),
            failed_deployments=int(data.get("failed_deployments", 0)),
            rollbacks=int(data.get("rollbacks", 0)),
            average_deployment_time_ms=float(data.get("average_deployment_time_ms", 0.0)),
            last_deployment_time=from_iso(data.get("last_deployment_time")),
        )


@dataclass
class RollbackRequest:
    """Raised by the deployment tracker when a trigger fires."""
    deployment_id: str
    environment: Environment
    reason: str
    details: str
    severity: str = "critical"


class RollbackEventStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RollbackEvent:
    """One executed or attempted rollback, with its audit trail."""
    id: str
    timestamp: datetime
    environment: Environment
    reason: str
    strategy: str
    status: RollbackEventStatus = RollbackEventStatus.IN_PROGRESS
    end_time: Optional[datetime] = None
    steps: List[Dict[str, Any]] = field(default_factory=list)
    health_checks: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    actor: str = "automated-system"
    severity: str = "normal"
    fallback_from: Optional[str] = None
    dispatch: Optional[Dict[str, Any]] = None

    @property
    def duration_ms(self) -> Optional[int]:
        if self.end_time is None:
            return None
        return elapsed_ms(self.timestamp, self.end_time)

    def finish(self, status: RollbackEventStatus, when: datetime) -> None:
        self.status = status
        self.end_time = when

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": to_iso(self.timestamp),
            "environment": self.environment.value,
            "reason": self.reason,
            "strategy": self.strategy,
            "status": self.status.value,
            "end_time": to_iso(self.end_time),
            "duration_ms": self.duration_ms,
            "steps": list(self.steps),
            "health_checks": list(self.health_checks),
            "errors": list(self.errors),
            "actor": self.actor,
            "severity": self.severity,
            "fallback_from": self.fallback_from,
            "dispatch": self.dispatch,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RollbackEvent":
        return cls(
            id=data["id"],
            timestamp=from_iso(data["timestamp"]),
            environment=parse_environment(data.get("environment", "dev")),
            reason=data.get("reason", ""),
            strategy=data.get("strategy", "immediate"),
            status=RollbackEventStatus(data.get("status", "failed")),
            end_time=from_iso(data.get("end_time")),
            steps=list(data.get("steps", [])),
            health_checks=list(data.get("health_checks", [])),
            errors=list(data.get("errors", [])),
            actor=data.get("actor", "automated-system"),
            severity=data.get("severity", "normal"),
            fallback_from=data.get("fallback_from"),
            dispatch=data.get("dispatch"),
        )
