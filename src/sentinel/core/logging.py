"""Loguru configuration: JSON lines in prod, colourised text elsewhere."""
import sys
import json
import logging
from contextvars import ContextVar
from typing import Optional

from loguru import logger as loguru_logger
from opentelemetry import trace

from src.sentinel.core.config import Settings, settings as default_settings

# Correlation id of the request being served, set by RequestContextMiddleware
trace_id: ContextVar[str] = ContextVar("trace_id", default="")

# Standard-library loggers routed into loguru
INTERCEPTED_LOGGERS = ["uvicorn", "uvicorn.access", "uvicorn.error", "fastapi", "httpx"]

TEXT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<magenta>{extra[correlation_id]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


def get_trace_id() -> str:
    """OpenTelemetry trace id of the current span, else the request correlation id."""
    span = trace.get_current_span()
    if span and span.is_recording():
        span_context = span.get_span_context()
        if span_context.is_valid:
            return format(span_context.trace_id, "032x")

    return trace_id.get() or "no-trace"


class InterceptHandler(logging.Handler):
    """Intercept standard logging and redirect to loguru."""

    def emit(self, record):
        try:
            level = loguru_logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        loguru_logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def _json_patcher(service: str, environment: str):
    """Render each record into ``extra["json"]`` for the prod sink."""

    def patch(record):
        entry = {
            "timestamp": record["time"].strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record["level"].name,
            "message": record["message"],
            "trace_id": get_trace_id(),
            "service": service,
            "environment": environment,
            "module": record["name"],
            "function": record["function"],
            "line": record["line"],
        }
        if record["exception"]:
            exc = record["exception"]
            entry["exception"] = {
                "type": exc.type.__name__ if exc.type else "Unknown",
                "value": str(exc.value) if exc.value else "",
            }
        entry.update({k: v for k, v in record["extra"].items() if k != "json"})
        record["extra"]["json"] = json.dumps(entry, default=str)

    return patch


def setup_logging(app_settings: Optional[Settings] = None):
    """Replace loguru's default sink according to the environment."""
    s = app_settings or default_settings
    log_level = "DEBUG" if s.DEBUG else "INFO"

    loguru_logger.remove()

    if s.ENV == "prod":
        loguru_logger.configure(extra={"correlation_id": None}, patcher=_json_patcher(s.PROJECT_NAME, s.ENV))
        loguru_logger.add(sys.stderr, format="{extra[json]}", level=log_level, colorize=False)
    else:
        loguru_logger.configure(extra={"correlation_id": "-"})
        loguru_logger.add(sys.stderr, format=TEXT_FORMAT, level=log_level, colorize=True)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for logger_name in INTERCEPTED_LOGGERS:
        logging.getLogger(logger_name).handlers = [InterceptHandler()]

    loguru_logger.debug(f"Logging configured for {s.PROJECT_NAME} ({s.ENV}, {log_level})")


logger = loguru_logger
