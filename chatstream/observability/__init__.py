"""
chatstream - Observability Module

- Prometheus metrics (Counter, Histogram, Gauge)
- OpenTelemetry tracing of stream attempts
- Structured JSON logging with stream context injection
- W3C trace context propagation into provider requests

Usage:
    from chatstream.observability import get_logger, get_metrics, get_tracing_manager

    logger = get_logger(__name__)
    metrics = get_metrics()
    tracing = get_tracing_manager()
"""

from .metrics import (
    StreamMetricsCollector,
    get_metrics,
    setup_metrics,
    metrics_text,
)
from .tracing import (
    TracingManager,
    TraceContext,
    get_tracing_manager,
    setup_tracing,
    trace_stream_attempt,
)
from .logging import (
    JSONFormatter,
    StructuredLogger,
    get_logger,
    setup_logging,
    LogContext,
)

__all__ = [
    # Metrics
    "StreamMetricsCollector",
    "get_metrics",
    "setup_metrics",
    "metrics_text",
    # Tracing
    "TracingManager",
    "TraceContext",
    "get_tracing_manager",
    "setup_tracing",
    "trace_stream_attempt",
    # Logging
    "JSONFormatter",
    "StructuredLogger",
    "get_logger",
    "setup_logging",
    "LogContext",
]
