"""Unit tests for process-level observability wiring."""

from __future__ import annotations

import logging

import pytest

from kv_postings import bootstrap
from kv_postings.config import Settings


pytestmark = pytest.mark.unit


def test_init_observability_wires_in_order(monkeypatch) -> None:
    calls: list[str] = []
    for name in (
        "configure_logging",
        "configure_metrics_exporter",
        "init_metrics",
        "init_tracing",
        "configure_trace_exporter",
        "init_log_exporter",
        "configure_log_exporter",
    ):
        monkeypatch.setattr(bootstrap, name, lambda *args, _name=name, **kwargs: calls.append(_name))

    settings = bootstrap.init_observability(Settings(log_level="debug"))

    assert settings.log_level == "DEBUG"
    assert calls == [
        "configure_logging",
        "configure_metrics_exporter",
        "init_metrics",
        "init_tracing",
        "configure_trace_exporter",
        "init_log_exporter",
        "configure_log_exporter",
    ]


def test_init_observability_configures_root_logger(monkeypatch) -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    monkeypatch.setenv("KV_POSTINGS_LOG_LEVEL", "error")
    try:
        settings = bootstrap.init_observability()

        assert settings.log_level == "ERROR"
        assert root.level == logging.ERROR
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
