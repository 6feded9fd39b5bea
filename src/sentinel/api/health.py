"""Health, readiness and liveness endpoints."""
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from loguru import logger

from src.sentinel.api.deps import get_runtime
from src.sentinel.services.runtime import Runtime

router = APIRouter()

NO_CACHE = {"Cache-Control": "no-cache, no-store, must-revalidate"}


@router.get("/health")
async def health(runtime: Runtime = Depends(get_runtime)):
    """
    Full health report.

    200 unless a critical dependency fails, in which case 503.
    """
    report = await runtime.health.generate_health_report()
    current = runtime.deployments.current
    report["deployment"]["deployment_id"] = current.id if current else None

    unhealthy = report["status"] == "unhealthy"
    if unhealthy:
        logger.warning(f"Health check UNHEALTHY: {report['checks']}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE if unhealthy else status.HTTP_200_OK,
        content=report,
        headers={**NO_CACHE, "X-Health-Status": report["status"]},
    )


@router.get("/ready")
async def ready(runtime: Runtime = Depends(get_runtime)):
    """
    Readiness check: is the service fit to receive traffic?

    Requires a completed first health tick, the critical dependencies
    (filesystem, memory, network) and enough of the rest healthy.
    """
    report = await runtime.health.generate_readiness_report()
    is_ready = report["status"] == "ready"
    return JSONResponse(
        status_code=status.HTTP_200_OK if is_ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=report,
        headers={**NO_CACHE, "X-Readiness-Status": report["status"]},
    )


@router.get("/live")
async def live(runtime: Runtime = Depends(get_runtime)):
    """Liveness check: is the process alive?"""
    report = runtime.health.liveness()
    current = runtime.deployments.current
    report["deployment_id"] = current.id if current else None
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content=report,
        headers={**NO_CACHE, "X-Liveness-Status": "alive"},
    )
