"""Tracing utilities built on OpenTelemetry.

- span: context manager wrapping a pipeline stage in an OpenTelemetry span.
- A tracer provider is installed once; a console exporter is attached when
  settings.OTEL_CONSOLE_EXPORT is set, otherwise spans go wherever an external
  configuration sends them.
"""
from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from docsrag.config import settings

logger = logging.getLogger(__name__)

_otel_inited: bool = False


def _init_otel() -> None:
    """Install the tracer provider once per process."""
    global _otel_inited
    if _otel_inited:
        return
    tp = TracerProvider()
    if settings.OTEL_CONSOLE_EXPORT:
        tp.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(tp)
    _otel_inited = True


@contextmanager
def span(name: str, attributes: Optional[Dict[str, Any]] = None) -> Iterator[trace.Span]:
    """Run the enclosed block inside an OpenTelemetry span.

    The elapsed time is also logged at debug level.

    Args:
        name: Span name, e.g. ``rag.search``.
        attributes: Primitive attributes attached to the span.
    """
    _init_otel()
    tracer = trace.get_tracer("docsrag")
    start = time.perf_counter()
    with tracer.start_as_current_span(name, attributes=attributes or {}) as current:
        try:
            yield current
        finally:
            logger.debug("%s took %.1f ms", name, (time.perf_counter() - start) * 1000)
