"""Process-level wiring: logging, metrics, tracing and log export from settings."""

from __future__ import annotations

import logging

from kv_postings.config import Settings, get_settings
from kv_postings.observability import (
    build_trace_resource_attributes,
    configure_log_exporter,
    configure_logging,
    configure_metrics_exporter,
    configure_trace_exporter,
    init_log_exporter,
    init_metrics,
    init_tracing,
)


logger = logging.getLogger(__name__)

SERVICE_NAME = "kv-postings"


def init_observability(settings: Settings | None = None) -> Settings:
    """Configure observability once at process start and return the settings used.

    The metrics exporter is configured before ``init_metrics`` so the
    periodic reader is attached when the meter provider is created.
    """
    settings = settings or get_settings()
    configure_logging(
        level=settings.log_level,
        json_output=settings.log_json,
        logger_levels=settings.get_logger_levels(),
    )
    collector_config = settings.observability
    resource_attributes = build_trace_resource_attributes(collector_config)
    configure_metrics_exporter(
        collector_config,
        service_name=SERVICE_NAME,
        resource_attributes=resource_attributes,
    )
    init_metrics(service_name=SERVICE_NAME, resource_attributes=resource_attributes)
    init_tracing(service_name=SERVICE_NAME, resource_attributes=resource_attributes)
    configure_trace_exporter(collector_config)
    init_log_exporter(service_name=SERVICE_NAME, resource_attributes=resource_attributes)
    configure_log_exporter(collector_config)
    logger.debug("Observability initialized (export enabled: %s)", collector_config.enabled)
    return settings
