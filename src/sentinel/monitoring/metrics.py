import time
from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from fastapi import Request, Response

# HTTP metrics
REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status_code"]
)

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"]
)

# Health monitor
HEALTH_STATUS = Gauge(
    "sentinel_health_status",
    "Overall health: 0=healthy, 1=degraded, 2=unhealthy",
)

DEPENDENCY_UP = Gauge(
    "sentinel_dependency_up",
    "Dependency check result: 1=passing, 0=failing",
    ["dependency", "critical"]
)

SERVICE_READY = Gauge("sentinel_service_ready", "Service readiness: 1=ready, 0=not ready")

# Deployment tracker
DEPLOYMENTS_TOTAL = Counter(
    "sentinel_deployments_total",
    "Completed deployments by final status",
    ["status"]
)

ROLLBACK_TRIGGERS_TOTAL = Counter(
    "sentinel_rollback_triggers_total",
    "Automatic rollback triggers raised by the deployment tracker",
    ["reason"]
)

# Rollback controller
ROLLBACKS_TOTAL = Counter(
    "sentinel_rollbacks_total",
    "Executed rollbacks by strategy and outcome",
    ["strategy", "status"]
)

ROLLBACKS_REJECTED_TOTAL = Counter(
    "sentinel_rollbacks_rejected_total",
    "Rollback requests rejected by the cooldown / rate gate",
)

# Notification dispatcher
NOTIFICATIONS_TOTAL = Counter(
    "sentinel_notifications_total",
    "Notification delivery attempts by channel and outcome",
    ["channel", "outcome"]
)

NOTIFICATION_QUEUE_LENGTH = Gauge(
    "sentinel_notification_queue_length",
    "Pending notifications in the durable queue",
)

NOTIFICATIONS_DROPPED_TOTAL = Counter(
    "sentinel_notifications_dropped_total",
    "Notifications dropped after exhausting retries",
    ["event_type"]
)

# Performance tracker
RESOURCE_USAGE = Gauge(
    "sentinel_resource_usage_percent",
    "Most recent resource usage sample",
    ["resource"]
)

PHASE_DURATION = Histogram(
    "sentinel_deployment_phase_duration_seconds",
    "Deployment phase duration",
    ["phase"],
    buckets=(10, 30, 60, 120, 180, 240, 300, 600, 900, 1800),
)

PERFORMANCE_SCORE = Gauge(
    "sentinel_performance_score",
    "Derived performance score (0-100)",
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp):
        super().__init__(app)

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception:
            status_code = 500
            raise
        finally:
            process_time = time.time() - start_time

            # Health endpoints are polled constantly; keep them out of the series
            path = request.url.path
            if path not in ("/health", "/ready", "/live", "/metrics"):
                REQUEST_COUNT.labels(
                    method=request.method,
                    endpoint=path,
                    status_code=status_code
                ).inc()

                REQUEST_LATENCY.labels(
                    method=request.method,
                    endpoint=path
                ).observe(process_time)

        return response


def metrics_endpoint(request: Request):
    """Endpoint for Prometheus scraping."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
