#!/usr/bin/env python3
"""
OpenTelemetry tracing for the News Briefing service.

Spans cover feed fetches, fetch cycles, scheduler sleeps and the two AI
proxies; outgoing aiohttp requests are instrumented automatically. Spans and
log records are exported to Azure Monitor when a connection string is set.

Environment variables:
  - APPLICATIONINSIGHTS_CONNECTION_STRING or AZURE_MONITOR_CONNECTION_STRING
  - OTEL_SERVICE_NAME (default: news-briefing)
  - OTEL_ENVIRONMENT (maps to deployment.environment)
  - DISABLE_TELEMETRY=true to fully disable

Every module calls init_telemetry() at import; only the first call does work.
"""

from __future__ import annotations

import atexit
import functools
import inspect
import logging
import os
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Optional

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.instrumentation.aiohttp_client import AioHttpClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from azure.monitor.opentelemetry.exporter import AzureMonitorTraceExporter, AzureMonitorLogExporter

DEFAULT_SERVICE_NAME = "news-briefing"

_init_lock = threading.Lock()
_provider: Optional[TracerProvider] = None

_logger = logging.getLogger("NewsBriefing.telemetry")


def telemetry_disabled() -> bool:
    return os.environ.get("DISABLE_TELEMETRY", "false").lower() == "true"


def _connection_string() -> Optional[str]:
    return os.environ.get("APPLICATIONINSIGHTS_CONNECTION_STRING") or os.environ.get(
        "AZURE_MONITOR_CONNECTION_STRING"
    )


def _build_resource(service_name: Optional[str]) -> Resource:
    attrs = {"service.name": service_name or os.environ.get("OTEL_SERVICE_NAME", DEFAULT_SERVICE_NAME)}
    environment = os.environ.get("OTEL_ENVIRONMENT")
    if environment:
        attrs["deployment.environment"] = environment
    return Resource.create(attrs)


def init_telemetry(service_name: Optional[str] = None) -> None:
    """Install the tracer provider and instrumentation once per process.

    A provider installed by external auto-instrumentation is reused.
    """
    global _provider
    if telemetry_disabled() or _provider is not None:
        return
    with _init_lock:
        if _provider is not None:
            return

        resource = _build_resource(service_name)
        current = trace.get_tracer_provider()
        provider = current if isinstance(current, TracerProvider) else TracerProvider(resource=resource)

        conn = _connection_string()
        if conn:
            try:
                provider.add_span_processor(BatchSpanProcessor(AzureMonitorTraceExporter.from_connection_string(conn)))
                _logger.info(f"📈 Exporting traces to Azure Monitor as {resource.attributes.get('service.name')}")
            except ValueError as e:
                _logger.warning(f"Azure Monitor exporter rejected the connection string: {e}")
                conn = None
        else:
            _logger.debug("No Application Insights connection string; spans stay local")

        if provider is not current:
            trace.set_tracer_provider(provider)
        _provider = provider

        AioHttpClientInstrumentor().instrument()
        # Adds otelTraceID / otelSpanID to log records; the log format is unchanged
        LoggingInstrumentor().instrument()
        atexit.register(_shutdown)

        if conn:
            handler = enable_log_export(resource)
            if handler is not None:
                logging.getLogger().addHandler(handler)


def _shutdown() -> None:
    # Flushes pending spans from the batch processor
    if _provider is not None:
        _provider.shutdown()


def get_tracer(name: str = DEFAULT_SERVICE_NAME):
    """Get the OpenTelemetry tracer for a named subsystem."""
    return trace.get_tracer(name)


@contextmanager
def _span(tracer, name: str, attributes: Dict[str, Any]):
    with tracer.start_as_current_span(name, record_exception=False, set_status_on_exception=False) as span:
        for key, value in attributes.items():
            span.set_attribute(key, value)
        try:
            yield span
        except Exception as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise


def trace_span(
    span_name: Optional[str] = None,
    *,
    tracer_name: Optional[str] = None,
    attr_from_args: Optional[Callable[..., Dict[str, Any]]] = None,
):
    """Run a coroutine function inside an OpenTelemetry span.

    Args:
        span_name: Name of the span (defaults to module.funcname)
        tracer_name: Tracer name (defaults to the first dotted part of the span name)
        attr_from_args: Receives the call's arguments and returns span attributes

    Cancellation passes through without marking the span as failed.
    """

    def _decorator(func):
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"trace_span only wraps coroutine functions, got {func!r}")
        name = span_name or f"{func.__module__}.{func.__name__}"
        tracer = get_tracer(tracer_name or name.split(".")[0])

        @functools.wraps(func)
        async def _wrapper(*args, **kwargs):
            attributes: Dict[str, Any] = {}
            if attr_from_args is not None:
                try:
                    attributes = attr_from_args(*args, **kwargs) or {}
                except (TypeError, ValueError, AttributeError):
                    attributes = {}
            with _span(tracer, name, attributes):
                return await func(*args, **kwargs)

        return _wrapper

    return _decorator


def enable_log_export(resource: Optional[Resource] = None) -> Optional[logging.Handler]:
    """Return a logging handler that ships records to Azure Monitor, if configured."""
    conn = _connection_string()
    if not conn:
        return None
    from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
    from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
    from opentelemetry._logs import set_logger_provider

    log_provider = LoggerProvider(resource=resource or Resource.create({}))
    log_provider.add_log_record_processor(
        BatchLogRecordProcessor(AzureMonitorLogExporter.from_connection_string(conn))
    )
    set_logger_provider(log_provider)
    return LoggingHandler(level=logging.NOTSET, logger_provider=log_provider)
