"""Observability utilities providing OpenTelemetry spans.

This module centralizes lightweight tracing:
- _init_otel: install a global tracer provider once; a console exporter is attached
  when settings.OTEL_CONSOLE_EXPORT is true, otherwise users plug in an exporter
  (e.g. OTLP) externally.
- span: context manager wrapping a unit of work (retrieval, reranking) in a span,
  recording attributes and any exception raised inside it.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Optional

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from netdoc_rag.config import settings

logger = logging.getLogger(__name__)

_provider_installed: bool = False


def _init_otel() -> None:
    """Initialize the OpenTelemetry tracer provider once per process."""
    global _provider_installed
    if _provider_installed:
        return
    provider = TracerProvider()
    if settings.OTEL_CONSOLE_EXPORT:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    _provider_installed = True


@contextmanager
def span(name: str, attributes: Optional[Dict[str, Any]] = None):
    """Run the enclosed block inside span `name`; errors are recorded and re-raised."""
    _init_otel()
    tracer = trace.get_tracer(__name__)
    otel_span = tracer.start_span(name=name)
    for k, v in (attributes or {}).items():
        if isinstance(v, (str, bool, int, float)):
            otel_span.set_attribute(k, v)
    try:
        yield otel_span
    except BaseException as exc:
        otel_span.record_exception(exc)
        otel_span.set_status(trace.Status(trace.StatusCode.ERROR, str(exc)))
        raise
    finally:
        otel_span.end()
