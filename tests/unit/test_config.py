"""Unit tests for environment-driven settings."""

from __future__ import annotations

from pydantic import ValidationError
import pytest

from kv_postings.config import ObservabilityCollectorConfig, Settings, get_settings


pytestmark = pytest.mark.unit


def test_settings_read_prefixed_environment() -> None:
    settings = get_settings()

    assert settings.keyspace_root == "test"
    assert settings.scan_batch_size == 4
    assert settings.log_json is False
    assert settings.log_level == "INFO"


def test_get_settings_is_cached() -> None:
    assert get_settings() is get_settings()


def test_nested_observability_settings(monkeypatch) -> None:
    monkeypatch.setenv("KV_POSTINGS_OBSERVABILITY__ENABLED", "true")
    monkeypatch.setenv("KV_POSTINGS_OBSERVABILITY__OTLP_PROTOCOL", "http")

    settings = Settings()

    assert settings.observability.enabled is True
    assert settings.observability.otlp_protocol == "http"


def test_log_level_is_validated(monkeypatch) -> None:
    monkeypatch.setenv("KV_POSTINGS_LOG_LEVEL", "verbose")

    with pytest.raises(ValidationError, match="Unknown log level"):
        Settings()


def test_logger_levels_are_normalized() -> None:
    settings = Settings(logger_levels={"kv_postings.store": "debug"})

    assert settings.get_logger_levels() == {"kv_postings.store": "DEBUG"}


@pytest.mark.parametrize(
    "overrides",
    [
        {"scan_batch_size": 0},
        {"postings_extension": ""},
        {"sqlite_busy_timeout_ms": -1},
    ],
)
def test_invalid_values_fail_fast(overrides) -> None:
    with pytest.raises(ValidationError):
        Settings(**overrides)


def test_collector_config_forbids_unknown_keys() -> None:
    with pytest.raises(ValidationError):
        ObservabilityCollectorConfig(endpoint="http://collector")

    assert ObservabilityCollectorConfig(timeout_seconds=5).timeout_seconds == 5
