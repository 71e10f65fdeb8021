import os

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor, ConsoleSpanExporter


def configure_tracing(service_name: str = "convene-backend") -> None:
    """
    Install the SDK tracer provider once per process.

    Spans carry the service name and are written to stdout unless
    OTEL_CONSOLE_EXPORT=false; module-level tracers keep working either way.
    """
    if isinstance(trace.get_tracer_provider(), TracerProvider):
        return

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    if os.getenv("OTEL_CONSOLE_EXPORT", "true").lower() not in ("0", "false", "no"):
        # Synchronous export: a batch worker thread can outlive pytest's captured stdout.
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
