from __future__ import annotations

import os
from importlib import metadata
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from crmhub.core.config import get_settings
from crmhub.middleware.correlation_id import CORRELATION_HEADER, resolve_correlation_id


_configured = False
_provider: TracerProvider | None = None


def _service_version() -> str:
    try:
        return metadata.version("crmhub")
    except metadata.PackageNotFoundError:
        return os.getenv("APP_VERSION", "0.1.0")


def _get_or_create_provider(service_name: str) -> TracerProvider:
    global _provider

    if _provider is not None:
        return _provider

    settings = get_settings()
    resource = Resource.create(
        {
            "service.name": f"crmhub-{service_name}",
            "service.namespace": settings.app_name,
            "service.version": _service_version(),
            "deployment.environment": settings.app_env,
        }
    )
    _provider = TracerProvider(resource=resource)
    trace.set_tracer_provider(_provider)
    return _provider


def setup_otel(service_name: str, enable: bool) -> TracerProvider | None:
    """Install the tracer provider for ``service_name`` (``api`` or ``worker``) once per process.

    Spans go to ``OTEL_EXPORTER_OTLP_ENDPOINT`` over OTLP/HTTP when set and to
    stdout when ``OTEL_CONSOLE_EXPORTER=true``.
    """

    global _configured

    if not enable:
        return None

    provider = _get_or_create_provider(service_name)
    if _configured:
        return provider

    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    if os.getenv("OTEL_CONSOLE_EXPORTER", "false").lower() == "true":
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    _configured = True
    return provider


def setup_inmemory_otel(service_name: str = "api") -> InMemorySpanExporter:
    provider = _get_or_create_provider(service_name)
    exporter = InMemorySpanExporter()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


def get_fastapi_server_request_hook():
    header = CORRELATION_HEADER.encode("latin-1")

    def server_request_hook(span, scope: dict[str, Any]) -> None:  # type: ignore[no-untyped-def]
        if span is None or not span.is_recording():
            return
        raw = dict(scope.get("headers", [])).get(header)
        value = raw.decode("latin-1") if raw else None
        if value and resolve_correlation_id(value) == value:
            span.set_attribute("correlation_id", value)

    return server_request_hook
