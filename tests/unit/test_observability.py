"""Unit tests for observability module."""

import json
import logging
from unittest.mock import Mock

from opentelemetry import trace as trace_api
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricExportResult
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode
from prometheus_client import REGISTRY
import pytest

from kv_postings.config import ObservabilityCollectorConfig
from kv_postings.errors import CountMismatchError
from kv_postings.index.doc_values import DocValuesWriter
from kv_postings.index.postings_writer import FieldsWriter
from kv_postings.observability import (
    KEY_WRITES,
    JsonFormatter,
    build_trace_resource_attributes,
    configure_logging,
    configure_metrics_exporter,
    configure_trace_exporter,
    create_span,
    get_metrics,
    get_metrics_content_type,
    get_trace_context,
    init_metrics,
    init_tracing,
    metrics as metrics_module,
    record_error,
    set_trace_context,
    tracing as tracing_module,
)
from kv_postings.observability.context import update_span_id
from kv_postings.store import MemoryTransaction


def _record(msg: str = "test message", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="kv_postings.index.postings_writer",
        level=logging.INFO,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def _setup_exporter() -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    provider = trace_api.get_tracer_provider()
    if not isinstance(provider, TracerProvider):
        provider = init_tracing("test-service")
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


@pytest.mark.unit
class TestJsonFormatter:
    """Tests for structured JSON logging."""

    def test_format_includes_trace_context_and_segment(self):
        set_trace_context("a" * 32, "b" * 16, segment="_0")

        data = json.loads(JsonFormatter().format(_record()))

        assert data["trace_id"] == "a" * 32
        assert data["span_id"] == "b" * 16
        assert data["segment"] == "_0"
        assert data["component"] == "postings_writer"
        assert data["message"] == "test message"

    def test_format_renders_keys_as_hex(self):
        data = json.loads(JsonFormatter().format(_record(key=b"\x01cat\x00")))

        assert data["key"] == "0163617400"

    def test_format_truncates_long_keys(self):
        data = json.loads(JsonFormatter().format(_record(key=b"\xff" * 100)))

        assert data["key"] == "ff" * JsonFormatter.MAX_KEY_PREVIEW + "..."

    def test_format_truncates_long_message_and_extras(self):
        formatter = JsonFormatter()

        data = json.loads(formatter.format(_record("x" * 3000, term="y" * 600)))

        assert data["message"].endswith("...")
        assert len(data["message"]) == formatter.MAX_MESSAGE_LEN + 3
        assert data["term"] == "y" * 500 + "..."

    def test_json_default_handles_sets(self):
        formatter = JsonFormatter()

        assert formatter._json_default({3, 1}) == [1, 3]
        assert len(formatter._json_default({1, "a"})) == 2


@pytest.mark.unit
class TestTraceContext:
    def test_get_trace_context_generates_ids(self):
        set_trace_context("", "")

        ctx = get_trace_context()

        assert len(ctx["trace_id"]) == 32
        assert len(ctx["span_id"]) == 16

    def test_update_span_id_preserves_trace_id_and_extras(self):
        set_trace_context("t" * 32, "s" * 16, segment="_1")

        update_span_id("n" * 16)

        ctx = get_trace_context()
        assert ctx["trace_id"] == "t" * 32
        assert ctx["span_id"] == "n" * 16
        assert ctx["segment"] == "_1"

    def test_writer_binds_segment_into_log_context(self, write_state):
        set_trace_context("c" * 32, "d" * 16)

        DocValuesWriter(MemoryTransaction({}), write_state)

        data = json.loads(JsonFormatter().format(_record()))
        assert data["segment"] == "_0"
        assert data["trace_id"] == "c" * 32


@pytest.mark.unit
class TestLoggingConfiguration:
    def test_configure_logging_applies_levels(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configure_logging("WARNING", json_output=True, logger_levels={"kv_postings.store": "debug"})

            assert root.level == logging.WARNING
            assert isinstance(root.handlers[0].formatter, JsonFormatter)
            assert logging.getLogger("kv_postings.store").level == logging.DEBUG
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
            logging.getLogger("kv_postings.store").setLevel(logging.NOTSET)


@pytest.mark.unit
class TestTracing:
    """Tests for OpenTelemetry tracing."""

    def test_create_span_context_manager(self):
        exporter = _setup_exporter()

        with create_span("test.operation", attributes={"field.name": "title"}):
            pass

        span = exporter.get_finished_spans()[-1]
        assert span.name == "test.operation"
        assert span.attributes["field.name"] == "title"

    def test_create_span_records_errors(self):
        exporter = _setup_exporter()

        with pytest.raises(ValueError), create_span("test.failure"):
            raise ValueError("boom")

        span = exporter.get_finished_spans()[-1]
        assert span.status.status_code is StatusCode.ERROR
        assert span.events[0].name == "exception"

    def test_doc_values_writes_are_traced(self, write_state):
        exporter = _setup_exporter()

        DocValuesWriter(MemoryTransaction({}), write_state).add_numeric_field(
            write_state.field_infos.field_info("price"), [1, 2, 3]
        )

        names = [span.name for span in exporter.get_finished_spans()]
        assert "doc_values.add_numeric_field" in names

    def test_build_trace_resource_attributes(self):
        config = ObservabilityCollectorConfig(resource_attributes={"service.version": "1.0.0"})

        assert build_trace_resource_attributes(config) == {"service.version": "1.0.0"}
        assert build_trace_resource_attributes(None) == {}

    def test_init_tracing_applies_resource_attributes(self):
        provider = init_tracing("test-service", resource_attributes={"service.version": "2.0.0"})

        assert provider.resource.attributes["service.version"] == "2.0.0"

    def test_get_tracer_initializes_when_missing(self):
        tracing_module._tracer_holder["tracer"] = None

        assert tracing_module.get_tracer() is not None

    def test_configure_trace_exporter_adds_span_processor(self, monkeypatch):
        provider = init_tracing("test-service")
        config = ObservabilityCollectorConfig(
            enabled=True,
            otlp_protocol="http",
            collector_endpoint="http://collector/v1/traces",
        )
        monkeypatch.setattr(tracing_module, "HttpOTLPSpanExporter", Mock(return_value=object()))
        add_processor = Mock()
        provider.add_span_processor = add_processor  # type: ignore[method-assign]

        configure_trace_exporter(config, provider=provider)

        add_processor.assert_called_once()

    def test_configure_trace_exporter_disabled_is_noop(self, monkeypatch):
        exporter_cls = Mock()
        monkeypatch.setattr(tracing_module, "GrpcOTLPSpanExporter", exporter_cls)

        configure_trace_exporter(ObservabilityCollectorConfig(enabled=False))

        exporter_cls.assert_not_called()

    def test_configure_trace_exporter_handles_exporter_failure(self, monkeypatch, caplog):
        config = ObservabilityCollectorConfig(enabled=True, otlp_protocol="grpc")
        monkeypatch.setattr(tracing_module, "GrpcOTLPSpanExporter", Mock(side_effect=RuntimeError("boom")))

        with caplog.at_level(logging.ERROR):
            configure_trace_exporter(config)

        assert "Failed to configure OTLP exporter" in caplog.text


@pytest.mark.unit
class TestMetrics:
    def test_init_metrics_creates_provider(self):
        metrics_module._meter_holder.update({"meter": None, "provider": None, "reader": None})

        provider = init_metrics("test-service", {"service.version": "1.0.0"})

        assert isinstance(provider, MeterProvider)
        assert init_metrics("test-service") is provider

    def test_key_writes_are_counted_by_kind(self, write_state):
        def _value(kind: str) -> float:
            return REGISTRY.get_sample_value("kv_index_key_writes_total", {"kind": kind}) or 0.0

        before_terms, before_docs, before_positions = _value("term"), _value("doc"), _value("position")
        terms = FieldsWriter(MemoryTransaction({}), write_state).add_field(write_state.field_infos.field_info("title"))
        postings = terms.start_term(b"cat")
        postings.start_doc(0, 2)
        postings.add_position(0)
        postings.add_position(3)

        assert _value("term") == before_terms + 1
        assert _value("doc") == before_docs + 1
        assert _value("position") == before_positions + 2

    def test_count_mismatch_is_recorded(self, write_state):
        labels = {"error_type": "CountMismatchError", "component": "postings_writer"}
        before = REGISTRY.get_sample_value("kv_index_errors_total", labels) or 0.0
        terms = FieldsWriter(MemoryTransaction({}), write_state).add_field(write_state.field_infos.field_info("title"))

        with pytest.raises(CountMismatchError):
            terms.finish(-1, 1, 0)

        assert REGISTRY.get_sample_value("kv_index_errors_total", labels) == before + 1

    def test_record_error_uses_class_name(self):
        labels = {"error_type": "KeyError", "component": "test"}
        before = REGISTRY.get_sample_value("kv_index_errors_total", labels) or 0.0

        record_error(KeyError("x"), component="test")

        assert REGISTRY.get_sample_value("kv_index_errors_total", labels) == before + 1

    def test_metric_bridge_unknown_kind_raises(self):
        bridge = metrics_module.MetricBridge(Mock(), otel_name="x", otel_description="x", otel_kind="gauge")

        with pytest.raises(ValueError, match="Unknown metric kind"):
            bridge.labels(kind="x").inc()

    def test_get_metrics_exposes_index_metrics(self):
        KEY_WRITES.labels(kind="term").inc(0)

        assert b"kv_index_key_writes_total" in get_metrics()
        assert get_metrics_content_type().startswith("text/plain")

    def test_configure_metrics_exporter_http_rewrites_endpoint(self, monkeypatch):
        metrics_module._meter_holder.update({"meter": None, "provider": None, "reader": None})
        captured: dict[str, str] = {}

        class FakeExporter:
            def __init__(self, *, endpoint, headers, timeout):
                captured["endpoint"] = endpoint
                self._preferred_temporality = None
                self._preferred_aggregation = None

            def export(self, metrics_data, timeout_millis=10_000, **kwargs):
                return MetricExportResult.SUCCESS

            def force_flush(self, timeout_millis=10_000):
                return True

            def shutdown(self, timeout_millis=30_000, **kwargs):
                return None

        monkeypatch.setattr(metrics_module, "HttpOTLPMetricExporter", FakeExporter)
        config = ObservabilityCollectorConfig(
            enabled=True,
            otlp_protocol="http",
            collector_endpoint="http://localhost:4318/v1/traces",
        )

        configure_metrics_exporter(config, service_name="test-service")

        assert captured["endpoint"] == "http://localhost:4318/v1/metrics"
        assert metrics_module._meter_holder["reader"] is not None
        metrics_module._meter_holder.update({"meter": None, "provider": None, "reader": None})
