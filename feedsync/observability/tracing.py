# feedsync/observability/tracing.py
"""
Minimal OpenTelemetry tracing bootstrap.

- Initializes a TracerProvider with a Console exporter.
- Instruments the FastAPI app when one is passed.
- Idempotent: safe to call from both the web process and the worker.
"""
from __future__ import annotations

from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor

_OTEL_INITIALIZED = False


def init_otel(app=None, service_name: str = "feedsync"):
    """Initialize OpenTelemetry tracing with console exporter.

    Pass the FastAPI app to instrument its routes.
    """
    global _OTEL_INITIALIZED

    if not _OTEL_INITIALIZED:
        resource = Resource.create({"service.name": service_name})
        provider = TracerProvider(resource=resource)
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
        trace.set_tracer_provider(provider)
        _OTEL_INITIALIZED = True

    if app is not None:
        FastAPIInstrumentor.instrument_app(app)

    return trace.get_tracer(service_name)


def get_tracer(name: str):
    """Tracer for library code; a no-op until init_otel has run."""
    return trace.get_tracer(name)
