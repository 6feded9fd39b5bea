"""Operator endpoints for deployments, performance tracking, alerts and notifications."""
from fastapi import APIRouter, Depends, HTTPException, status

from src.sentinel.api.deps import get_runtime
from src.sentinel.deployment.models import DeploymentMetadata, parse_environment
from src.sentinel.models.schemas import (
    DeploymentCompleteRequest,
    DeploymentFailureRequest,
    DeploymentStartRequest,
    HealthCheckReport,
    PerformanceCompleteRequest,
    PerformanceStartRequest,
    PhaseRequest,
    PipelineRequest,
)
from src.sentinel.services.runtime import Runtime

router = APIRouter()


def _environment(value: str):
    try:
        return parse_environment(value)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


# ----------------------------------------------------------------------
# Deployments
# ----------------------------------------------------------------------


@router.get("/deployments/status")
async def deployment_status(runtime: Runtime = Depends(get_runtime)):
    return runtime.deployments.get_deployment_status()


@router.get("/deployments/performance")
async def deployment_performance(runtime: Runtime = Depends(get_runtime)):
    return runtime.deployments.get_performance_metrics()


@router.post("/deployments", status_code=status.HTTP_201_CREATED)
async def start_deployment(body: DeploymentStartRequest, runtime: Runtime = Depends(get_runtime)):
    """Open a deployment. 409 while another one is still deploying."""
    metadata = DeploymentMetadata(
        environment=_environment(body.environment),
        version=body.version,
        image_tag=body.image_tag,
        commit_sha=body.commit_sha,
        branch=body.branch,
        actor=body.actor,
        trigger_id=body.trigger_id,
        build_timestamp=body.build_timestamp,
    )
    deployment = await runtime.start_deployment(metadata, body.grace_period_seconds)
    return deployment.to_dict()


@router.post("/deployments/current/health-checks")
async def record_health_check(body: HealthCheckReport, runtime: Runtime = Depends(get_runtime)):
    if runtime.deployments.current is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active deployment")
    decision = await runtime.deployments.record_health_check(
        body.endpoint,
        body.success,
        body.response_time_ms,
        body.error,
    )
    return {
        "recorded": True,
        "rollback_triggered": decision is not None,
        "trigger": decision.to_dict() if decision else None,
    }


@router.post("/deployments/current/success")
async def mark_successful(body: DeploymentCompleteRequest, runtime: Runtime = Depends(get_runtime)):
    deployment = await runtime.notify_deployment_complete(body.deployment_id)
    if deployment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No matching active deployment")
    return deployment.to_dict()


@router.post("/deployments/current/failure")
async def mark_failed(body: DeploymentFailureRequest, runtime: Runtime = Depends(get_runtime)):
    deployment = await runtime.notify_deployment_failed(body.reason, body.error, body.deployment_id)
    if deployment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No matching active deployment")
    return deployment.to_dict()


# ----------------------------------------------------------------------
# Rollback / notifications / alerts
# ----------------------------------------------------------------------


@router.get("/rollback/status")
async def rollback_status(runtime: Runtime = Depends(get_runtime)):
    status_report = runtime.rollback.get_rollback_status()
    gate = runtime.rollback.is_rollback_allowed()
    status_report["gate"] = gate.to_dict()
    return status_report


@router.get("/notifications/stats")
async def notification_stats(runtime: Runtime = Depends(get_runtime)):
    return runtime.notifications.get_notification_stats()


@router.post("/alerts/{alert_id}/acknowledge")
async def acknowledge_alert(alert_id: str, runtime: Runtime = Depends(get_runtime)):
    """Acknowledge a deployment or performance alert by id."""
    if await runtime.deployments.acknowledge_alert(alert_id):
        return {"acknowledged": True, "alert_id": alert_id, "source": "deployment"}
    if await runtime.performance.acknowledge_alert(alert_id):
        return {"acknowledged": True, "alert_id": alert_id, "source": "performance"}
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Alert {alert_id} not found")


# ----------------------------------------------------------------------
# Performance tracking
# ----------------------------------------------------------------------


@router.post("/performance/deployments", status_code=status.HTTP_201_CREATED)
async def start_performance_tracking(body: PerformanceStartRequest, runtime: Runtime = Depends(get_runtime)):
    record = await runtime.performance.start_tracking(
        body.deployment_id,
        _environment(body.environment).value,
        body.metadata,
    )
    return record.to_dict()


@router.post("/performance/phases")
async def track_phase(body: PhaseRequest, runtime: Runtime = Depends(get_runtime)):
    try:
        record = await runtime.performance.track_phase(body.phase, body.start_time, body.end_time, body.metadata)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No deployment is being tracked")
    return record.to_dict()


@router.post("/performance/complete")
async def complete_performance_tracking(
    body: PerformanceCompleteRequest,
    runtime: Runtime = Depends(get_runtime),
):
    record = await runtime.performance.complete_tracking(body.status, body.metadata)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No deployment is being tracked")
    return record.to_dict()


@router.post("/performance/pipelines", status_code=status.HTTP_201_CREATED)
async def track_pipeline(body: PipelineRequest, runtime: Runtime = Depends(get_runtime)):
    record = await runtime.performance.track_pipeline(body.model_dump())
    return record.to_dict()
