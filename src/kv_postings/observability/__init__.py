"""Observability module: structured logging, OpenTelemetry tracing and Prometheus metrics."""

from kv_postings.observability.context import bind_segment, get_trace_context, set_trace_context, trace_context
from kv_postings.observability.logging import (
    JsonFormatter,
    configure_log_exporter,
    configure_logging,
    init_log_exporter,
)
from kv_postings.observability.metrics import (
    ERROR_COUNT,
    FLUSH_LATENCY,
    KEY_WRITES,
    RANGE_SCANS,
    configure_metrics_exporter,
    get_metrics,
    get_metrics_content_type,
    init_metrics,
    record_error,
    track_latency,
)
from kv_postings.observability.tracing import (
    build_trace_resource_attributes,
    configure_trace_exporter,
    create_span,
    get_tracer,
    init_tracing,
)


__all__ = [
    "ERROR_COUNT",
    "FLUSH_LATENCY",
    "KEY_WRITES",
    "RANGE_SCANS",
    "JsonFormatter",
    "bind_segment",
    "build_trace_resource_attributes",
    "configure_log_exporter",
    "configure_logging",
    "configure_metrics_exporter",
    "configure_trace_exporter",
    "create_span",
    "get_metrics",
    "get_metrics_content_type",
    "get_trace_context",
    "get_tracer",
    "init_log_exporter",
    "init_metrics",
    "init_tracing",
    "record_error",
    "set_trace_context",
    "trace_context",
    "track_latency",
]
