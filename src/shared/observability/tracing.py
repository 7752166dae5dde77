# OpenTelemetry tracing setup

from typing import Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from ..config import Settings
from .logging import get_logger

logger = get_logger(__name__)


def setup_tracing(
    app, settings: Settings, version: str = "0.1.0"
) -> Optional[TracerProvider]:
    """
    Setup OpenTelemetry tracing for the FastAPI app.

    Args:
        app: FastAPI application instance
        settings: Application settings
        version: Service version recorded on the resource

    Returns:
        TracerProvider (always created, even without exporter)
    """
    logger.info(
        "Setting up OpenTelemetry tracing",
        endpoint=settings.otel_exporter_otlp_endpoint or "in-memory",
        service=settings.otel_service_name,
    )

    resource = Resource.create(
        {
            SERVICE_NAME: settings.otel_service_name,
            SERVICE_VERSION: version,
            "deployment.environment": settings.env,
        }
    )
    provider = TracerProvider(resource=resource)

    if settings.otel_exporter_otlp_endpoint:
        exporter = OTLPSpanExporter(
            endpoint=f"{settings.otel_exporter_otlp_endpoint}/v1/traces"
        )
        provider.add_span_processor(BatchSpanProcessor(exporter))
        logger.info("OTLP exporter configured")
    else:
        logger.info("OpenTelemetry tracing enabled (in-memory, no exporter)")

    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app)
    return provider


def get_tracer(name: str):
    """Get a tracer instance"""
    return trace.get_tracer(name)
