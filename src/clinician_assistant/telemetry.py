"""Tracing for the assistant.

``OBSERVABILITY`` picks the backend:

- ``"logfire"``: Pydantic Logfire (reads ``LOGFIRE_TOKEN``)
- ``"otel"``: OpenTelemetry with the OTLP HTTP exporter
- ``"off"``: no tracing (default)

Besides the FastAPI request spans, each conversation turn and each record
store dispatch gets its own span through :func:`pipeline_span`.  Span
attributes carry query types and conversation ids only, never patient
names or identifiers.  The backends ship in the ``observability`` extra and
are imported only when selected.
"""

from __future__ import annotations

from contextlib import AbstractContextManager, nullcontext
from typing import Any

from fastapi import FastAPI
from loguru import logger

from clinician_assistant import __version__
from clinician_assistant.config import Settings

_tracer: Any = None


def pipeline_span(name: str, **attributes: str | int) -> AbstractContextManager[Any]:
    """Open a span around one pipeline step; a no-op while tracing is off."""
    if _tracer is None:
        return nullcontext()
    return _tracer.start_as_current_span(name, attributes=attributes)


def setup_telemetry(app: FastAPI, settings: Settings) -> None:
    global _tracer
    _tracer = None

    mode = settings.observability
    if mode == "off":
        logger.info("Tracing disabled (OBSERVABILITY=off)")
        return

    if mode == "logfire":
        _setup_logfire(app, settings)
    elif mode == "otel":
        _setup_otel(app, settings)

    from opentelemetry import trace

    _tracer = trace.get_tracer("clinician_assistant", __version__)


def _setup_logfire(app: FastAPI, settings: Settings) -> None:
    import logfire

    logfire.configure(service_name=settings.otel_service_name, service_version=__version__)
    logfire.instrument_fastapi(app, excluded_urls=["/health"])

    logger.info("Logfire tracing on | service={}", settings.otel_service_name)


def _setup_otel(app: FastAPI, settings: Settings) -> None:
    from opentelemetry import trace
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.otel_service_name,
                "service.version": __version__,
                "assistant.expiring_budget_days": settings.expiring_budget_days,
            }
        )
    )
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=f"{settings.otel_exporter_otlp_endpoint}/v1/traces")
        )
    )

    if settings.otel_console_exporter:
        from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor

        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app, excluded_urls="/health")

    logger.info(
        "OpenTelemetry tracing on | service={} | endpoint={}",
        settings.otel_service_name,
        settings.otel_exporter_otlp_endpoint,
    )
