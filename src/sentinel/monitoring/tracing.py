"""OpenTelemetry distributed tracing setup."""
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.trace import Status, StatusCode
from fastapi import FastAPI
from loguru import logger

from src.sentinel.core.config import Settings, settings as default_settings

_provider: Optional[TracerProvider] = None


def _build_provider(settings: Settings) -> TracerProvider:
    resource = Resource.create(
        attributes={
            "service.name": settings.PROJECT_NAME,
            "service.version": settings.VERSION,
            "deployment.environment": settings.ENV,
            "sentinel.watched_version": settings.APP_VERSION,
            "sentinel.deployment_slot": settings.DEPLOYMENT_SLOT or "unknown",
        }
    )
    provider = TracerProvider(resource=resource)

    otlp_endpoint = settings.OTEL_EXPORTER_OTLP_ENDPOINT
    if otlp_endpoint and otlp_endpoint.lower() != "none":
        otlp_exporter = OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True)
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
        logger.info(f"✅ Tracing configured: exporting to {otlp_endpoint}")
    else:
        logger.info("Tracing export disabled")
    return provider


def setup_tracing(app: FastAPI, settings: Settings = default_settings):
    """
    Setup OpenTelemetry distributed tracing.

    The tracer provider is global to the process and installed once; each
    application instance is instrumented separately. Rollback execution and
    health ticks open their own spans through ``tracer``.
    """
    global _provider
    if _provider is None:
        _provider = _build_provider(settings)
        trace.set_tracer_provider(_provider)

    FastAPIInstrumentor.instrument_app(app, tracer_provider=_provider, excluded_urls="/live,/metrics")


tracer = trace.get_tracer("src.sentinel", default_settings.VERSION)


def get_current_span():
    """Get current active span."""
    return trace.get_current_span()


def set_span_attributes(span, **attributes):
    """Set multiple attributes on a span, skipping None values."""
    if span and span.is_recording():
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(key, value)


def record_exception(span, exception: Exception):
    """Record exception in span."""
    if span and span.is_recording():
        span.record_exception(exception)
        span.set_status(Status(StatusCode.ERROR, str(exception)))
