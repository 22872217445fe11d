# OpenTelemetry tracing setup

import os
from typing import Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from .logging import get_logger

logger = get_logger(__name__)

SERVICE_VERSION_VALUE = "0.1.0"


def get_tracer(name: str):
    """Get a tracer instance"""
    return trace.get_tracer(name)


def init_tracing(
    service_name: Optional[str] = None,
    service_version: Optional[str] = None,
    endpoint: Optional[str] = None,
) -> TracerProvider:
    """
    Initialize OpenTelemetry tracing for the query engine.

    Configuration via environment variables when arguments are omitted:
      - OTEL_SERVICE_NAME: Service name
      - OTEL_EXPORTER_OTLP_ENDPOINT: OTLP HTTP endpoint (e.g., http://alloy:4318)

    Returns:
        Configured TracerProvider
    """
    resolved_service_name = service_name or os.getenv("OTEL_SERVICE_NAME", "termquery")
    resolved_version = service_version or SERVICE_VERSION_VALUE
    environment = os.getenv("ENV", "development")
    endpoint = endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")

    logger.info(
        "Initializing OpenTelemetry tracing",
        service=resolved_service_name,
        version=resolved_version,
        environment=environment,
    )

    resource = Resource.create(
        {
            SERVICE_NAME: resolved_service_name,
            SERVICE_VERSION: resolved_version,
            "deployment.environment": environment,
        }
    )
    provider = TracerProvider(resource=resource)

    if endpoint:
        try:
            exporter = OTLPSpanExporter(endpoint=f"{endpoint}/v1/traces")
            provider.add_span_processor(BatchSpanProcessor(exporter))
            logger.info("OTLP trace exporter configured", endpoint=endpoint)
        except Exception as e:
            logger.warning("Failed to configure OTLP exporter", error=str(e))
    else:
        logger.info("OpenTelemetry tracing enabled (in-memory, no exporter)")

    trace.set_tracer_provider(provider)
    return provider
