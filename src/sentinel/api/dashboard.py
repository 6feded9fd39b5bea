"""Dashboard snapshots and the manual rollback trigger."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from src.sentinel.api.deps import get_runtime
from src.sentinel.core.limiter import ROLLBACK_LIMIT, limiter
from src.sentinel.models.schemas import RollbackTriggerRequest
from src.sentinel.monitoring.tracing import set_span_attributes, tracer
from src.sentinel.services.runtime import Runtime

router = APIRouter()


@router.get("/monitoring-dashboard")
async def monitoring_dashboard(runtime: Runtime = Depends(get_runtime)):
    """Unified dashboard assembled from every component's snapshot."""
    return JSONResponse(content=runtime.get_monitoring_status(), headers={"Cache-Control": "no-cache"})


@router.get("/performance-dashboard")
async def performance_dashboard(runtime: Runtime = Depends(get_runtime)):
    return JSONResponse(
        content=runtime.performance.get_performance_dashboard(),
        headers={"Cache-Control": "no-cache"},
    )


@router.get("/health-summary")
async def health_summary(runtime: Runtime = Depends(get_runtime)):
    """Compact status for external monitoring."""
    return runtime.get_health_summary()


@router.post("/trigger-rollback")
@limiter.limit(ROLLBACK_LIMIT)
async def trigger_rollback(
    request: Request,
    body: Optional[RollbackTriggerRequest] = None,
    runtime: Runtime = Depends(get_runtime),
):
    """
    Start a rollback by hand.

    Goes through the same cooldown and hourly cap as automatic rollbacks:
    a gate rejection answers 429, a rollback already running for the
    environment answers 409.
    """
    if body is None or not body.reason or not body.reason.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Reason is required")

    with tracer.start_as_current_span("trigger_rollback_endpoint") as span:
        set_span_attributes(span, environment=body.environment, actor=body.actor)
        try:
            outcome = await runtime.trigger_manual_rollback(
                body.reason.strip(),
                environment=body.environment,
                actor=body.actor or "api",
            )
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

        set_span_attributes(span, success=outcome.success, rejected=outcome.rejected)

    if outcome.rejected:
        gate = runtime.rollback.is_rollback_allowed()
        headers = {}
        if gate.retry_after_seconds:
            headers["Retry-After"] = str(int(gate.retry_after_seconds))
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"detail": outcome.reason, **outcome.to_dict()},
            headers=headers,
        )

    if not outcome.success:
        logger.error(f"Manual rollback failed: {outcome.reason}")
    return JSONResponse(
        status_code=status.HTTP_200_OK if outcome.success else status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=outcome.to_dict(),
    )
