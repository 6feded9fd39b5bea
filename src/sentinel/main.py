"""Main FastAPI application."""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.sentinel.api import api_router
from src.sentinel.api.health import router as health_router
from src.sentinel.core.config import Settings, settings as default_settings
from src.sentinel.core.errors import ErrorCategory, InvariantViolationError, SentinelError
from src.sentinel.core.limiter import limiter
from src.sentinel.core.logging import setup_logging
from src.sentinel.core.middleware import RequestContextMiddleware
from src.sentinel.monitoring.metrics import PrometheusMiddleware, metrics_endpoint
from src.sentinel.monitoring.tracing import setup_tracing
from src.sentinel.services.runtime import Runtime


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle: rehydrate and start the runtime, then shut it down gracefully."""
    runtime: Runtime = app.state.runtime
    logger.info(f"🚀 Starting {app.title} v{app.version} ({runtime.settings.ENV})")

    await runtime.start()
    logger.info("✅ Service is ready to accept requests")

    yield

    app.state.shutting_down = True
    logger.info("🛑 Shutting down gracefully...")
    await runtime.shutdown()
    logger.info("✅ Shutdown complete")


async def invariant_violation_handler(request: Request, exc: InvariantViolationError):
    logger.warning(f"Rejected {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=409, content={"detail": exc.message, **exc.to_dict()})


async def sentinel_error_handler(request: Request, exc: SentinelError):
    status_code = 503 if exc.category == ErrorCategory.TRANSIENT_IO else 500
    logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=status_code, content={"detail": exc.message, **exc.to_dict()})


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "correlation_id": getattr(request.state, "correlation_id", None),
        },
    )


def create_app(settings: Optional[Settings] = None, runtime: Optional[Runtime] = None) -> FastAPI:
    """Create FastAPI application with all middleware and routes."""
    settings = settings or default_settings

    setup_logging(settings)

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        lifespan=lifespan,
    )

    app.state.shutting_down = False
    app.state.runtime = runtime or Runtime(settings)

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(InvariantViolationError, invariant_violation_handler)
    app.add_exception_handler(SentinelError, sentinel_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    setup_tracing(app, settings)

    app.include_router(health_router, tags=["health"])
    app.include_router(api_router, prefix=settings.API_PREFIX)

    # Prometheus metrics endpoint
    app.add_route("/metrics", metrics_endpoint)

    logger.info("📦 Application configured successfully")

    return app


app = create_app()
