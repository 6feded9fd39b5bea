"""Request context middleware: correlation id, request logging, shutdown gate."""
import time
import uuid
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from loguru import logger

from src.sentinel.core.logging import trace_id as trace_id_var
from src.sentinel.monitoring.tracing import get_current_span, record_exception, set_span_attributes

# Load balancer health checks keep answering while the process drains
HEALTH_PATHS = ("/health", "/ready", "/live")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Attach a correlation id to every request and log its outcome."""

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if getattr(request.app.state, "shutting_down", False) and path not in HEALTH_PATHS:
            logger.warning(f"⚠️  Rejecting {request.method} {path} during shutdown")
            return JSONResponse(
                status_code=503,
                content={"detail": "Service is shutting down"},
            )

        start_time = time.time()
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
        trace_id_var.set(correlation_id)

        span = get_current_span()
        if span:
            set_span_attributes(
                span,
                correlation_id=correlation_id,
                http_method=request.method,
                http_url=str(request.url),
            )

        request.state.correlation_id = correlation_id
        request.state.start_time = start_time

        log = logger.bind(correlation_id=correlation_id)
        if path not in HEALTH_PATHS:
            log.info(f"➡️  {request.method} {path}")

        try:
            response = await call_next(request)
        except Exception as e:
            log.error(f"❌ {request.method} {path} failed: {e}")
            if span:
                record_exception(span, e)
            raise

        process_time = time.time() - start_time
        if span:
            set_span_attributes(
                span,
                http_status_code=response.status_code,
                http_response_time_ms=round(process_time * 1000, 2),
            )

        if path not in HEALTH_PATHS:
            log.bind(
                latency_ms=round(process_time * 1000, 2),
                status_code=response.status_code,
            ).info(f"✅ {request.method} {path} → {response.status_code}")

        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Process-Time"] = f"{process_time:.4f}"
        deployment = _active_deployment_id(request)
        if deployment:
            response.headers["X-Deployment-ID"] = deployment
        return response


def _active_deployment_id(request: Request):
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None or runtime.deployments.current is None:
        return None
    return runtime.deployments.current.id
