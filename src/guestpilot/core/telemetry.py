"""OpenTelemetry tracing bootstrap for the API and the worker."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from .config import TelemetrySettings

logger = logging.getLogger(__name__)

_TRACING_INITIALISED = False


def parse_exporter_headers(header_value: str | None) -> dict[str, str] | None:
    """Parse ``key=value,key2=value2`` into a header dict for OTLP exporters."""

    if not header_value:
        return None

    headers: dict[str, str] = {}
    for segment in header_value.split(","):
        segment = segment.strip()
        if not segment:
            continue
        if "=" not in segment:
            logger.warning("ignoring malformed OTLP header segment", extra={"segment": segment})
            continue
        key, value = segment.split("=", 1)
        headers[key.strip()] = value.strip()
    return headers or None


def init_tracing(service_name: str, settings: TelemetrySettings) -> bool:
    """Install an OTLP tracer provider; returns False when no endpoint is set."""

    global _TRACING_INITIALISED
    if _TRACING_INITIALISED:
        return True

    if not settings.exporter_endpoint:
        logger.warning(
            "distributed tracing disabled; no OTLP endpoint configured",
            extra={"service_name": service_name},
        )
        return False

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    exporter = OTLPSpanExporter(
        endpoint=settings.exporter_endpoint,
        headers=parse_exporter_headers(settings.exporter_headers),
    )
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    HTTPXClientInstrumentor().instrument()
    _TRACING_INITIALISED = True
    logger.info(
        "tracing initialised",
        extra={"service_name": service_name, "endpoint": settings.exporter_endpoint},
    )
    return True


def instrument_fastapi_app(app: FastAPI) -> None:
    """Attach OpenTelemetry instrumentation to a FastAPI application."""

    FastAPIInstrumentor.instrument_app(app, tracer_provider=trace.get_tracer_provider())
