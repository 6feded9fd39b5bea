from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class RollbackTriggerRequest(BaseModel):
    # Optional here so a missing reason maps to 400, not a validation error
    reason: Optional[str] = Field(default=None, description="Why the rollback is requested")
    environment: Optional[str] = Field(default=None, description="dev, staging or prod; defaults to ENV")
    actor: Optional[str] = Field(default=None, description="Who requested the rollback")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "reason": "Error rate spike after release 1.4.0",
                "environment": "prod",
                "actor": "oncall",
            }
        }
    )


class DeploymentStartRequest(BaseModel):
    environment: str = Field(..., description="dev, staging or prod")
    version: str = "unknown"
    image_tag: str = "unknown"
    commit_sha: str = "unknown"
    branch: str = "unknown"
    actor: str = "unknown"
    trigger_id: str = Field(default="unknown", description="CI workflow run id")
    build_timestamp: str = "unknown"
    grace_period_seconds: Optional[float] = Field(
        default=None,
        ge=0,
        description="Auto-complete as successful after this many seconds without a rollback trigger",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "environment": "staging",
                "version": "1.4.0",
                "image_tag": "ghcr.io/acme/web:1.4.0",
                "commit_sha": "3f2c9e1",
                "branch": "main",
                "actor": "release-bot",
                "trigger_id": "812734",
            }
        }
    )


class HealthCheckReport(BaseModel):
    endpoint: str
    success: bool
    response_time_ms: Optional[float] = Field(default=None, ge=0)
    error: Optional[str] = None


class DeploymentCompleteRequest(BaseModel):
    deployment_id: Optional[str] = Field(default=None, description="Must match the active deployment when given")


class DeploymentFailureRequest(BaseModel):
    reason: str
    error: Optional[str] = None
    deployment_id: Optional[str] = None


class PerformanceStartRequest(BaseModel):
    deployment_id: str
    environment: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PhaseRequest(BaseModel):
    phase: str = Field(..., description="build, test, security-scan, deploy, health-check or verification")
    start_time: datetime
    end_time: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("start_time", "end_time")
    @classmethod
    def ensure_timezone(cls, value: datetime) -> datetime:
        return _as_utc(value)


class PerformanceCompleteRequest(BaseModel):
    status: str = "completed"
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PipelineJob(BaseModel):
    name: Optional[str] = None
    type: str = Field(default="github-runner", description="Cost category of the job")
    duration_ms: int = Field(default=0, ge=0)
    status: Optional[str] = None


class PipelineRequest(BaseModel):
    id: Optional[str] = None
    type: str = "ci-cd"
    duration_ms: int = Field(default=0, ge=0)
    jobs: List[PipelineJob] = Field(default_factory=list)
    parallel_jobs: int = Field(default=0, ge=0)
    total_jobs: Optional[int] = Field(default=None, ge=0)
    failed_jobs: int = Field(default=0, ge=0)
    queue_time_ms: int = Field(default=0, ge=0)
    execution_time_ms: Optional[int] = Field(default=None, ge=0)
    environment: Optional[str] = None
    branch: Optional[str] = None
    triggered_by: Optional[str] = None
