from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from app.context import get_actor_id, get_correlation_id
from app.core.config import get_settings

TRACER_NAME = "boaz.api"

_provider: TracerProvider | None = None
_exporters_attached = False


def _provider_for(service_name: str) -> TracerProvider:
    """Create the process-wide provider once; later calls reuse it whatever the name."""
    global _provider
    if _provider is None:
        settings = get_settings()
        resource = Resource.create(
            {
                "service.name": service_name,
                "service.version": settings.app_version,
                "deployment.environment": settings.app_env,
            }
        )
        _provider = TracerProvider(resource=resource)
        trace.set_tracer_provider(_provider)
    return _provider


def setup_otel(service_name: str, enable: bool) -> TracerProvider | None:
    """Attach the configured exporters: OTLP/HTTP when an endpoint is set, console when asked."""
    global _exporters_attached
    if not enable:
        return None

    provider = _provider_for(service_name)
    if _exporters_attached:
        return provider

    settings = get_settings()
    if settings.otel_exporter_otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    if settings.otel_console_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    _exporters_attached = True
    return provider


def setup_inmemory_otel(service_name: str = "api") -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    _provider_for(service_name).add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def get_tracer(name: str = TRACER_NAME) -> trace.Tracer:
    return trace.get_tracer(name)


@contextmanager
def traced(span_name: str, **attributes: Any) -> Iterator[trace.Span]:
    """Open a span tagged with the correlation id, the acting user and the given attributes."""
    with get_tracer().start_as_current_span(span_name) as span:
        for key, value in (("correlation_id", get_correlation_id()), ("actor_id", get_actor_id())):
            if value:
                span.set_attribute(key, value)
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(key, str(value))
        yield span


def get_fastapi_server_request_hook():
    def server_request_hook(span, scope: dict[str, Any]) -> None:  # type: ignore[no-untyped-def]
        if span is None or not span.is_recording():
            return
        for name, value in scope.get("headers", []):
            if name == b"x-correlation-id":
                span.set_attribute("correlation_id", value.decode("utf-8", "replace"))
                break

    return server_request_hook
