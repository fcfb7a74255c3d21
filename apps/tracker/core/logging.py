"""Logging and tracing setup for the tracker API."""

from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from apps.tracker.core.config import Settings

# Package whose loggers (services, policy, store) share the tracker level.
TRACKER_LOGGER = "apps.tracker"

_TRACER_INITIALISED = False


def parse_pairs(raw: str | None) -> dict[str, str]:
    """Parse ``key=value,key2=value2``; items without a key or ``=`` are skipped."""

    if not raw:
        return {}
    pairs: dict[str, str] = {}
    for item in raw.split(","):
        key, sep, value = item.partition("=")
        if sep and key.strip():
            pairs[key.strip()] = value.strip()
    return pairs


def _level(name: str | None, default: int) -> int:
    if not name:
        return default
    value = logging.getLevelName(name.strip().upper())
    return value if isinstance(value, int) else default


def logger_levels(settings: Settings) -> dict[str, int]:
    """Per-logger levels: tracker and SQL defaults, then ``logger_levels`` overrides."""

    root = _level(settings.log_level, logging.INFO)
    levels = {
        TRACKER_LOGGER: _level(settings.tracker_log_level, root),
        "sqlalchemy.engine": logging.INFO if settings.database_echo else logging.WARNING,
    }
    for name, level in parse_pairs(settings.logger_levels).items():
        levels[name] = _level(level, root)
    return levels


def build_logging_config(settings: Settings) -> dict[str, Any]:
    root = _level(settings.log_level, logging.INFO)
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": {"format": settings.log_format}},
        "handlers": {
            "default": {"class": "logging.StreamHandler", "formatter": "default"},
        },
        "root": {"handlers": ["default"], "level": root},
        "loggers": {name: {"level": level} for name, level in logger_levels(settings).items()},
    }


def configure_logging(settings: Settings) -> logging.Logger:
    """Apply the logging config and return the tracker's application logger."""

    dictConfig(build_logging_config(settings))
    return logging.getLogger(TRACKER_LOGGER)


def _exporter(settings: Settings) -> OTLPSpanExporter:
    kwargs: dict[str, Any] = {}
    if settings.otel_exporter_otlp_endpoint:
        kwargs["endpoint"] = settings.otel_exporter_otlp_endpoint
    headers = parse_pairs(settings.otel_exporter_otlp_headers)
    if headers:
        kwargs["headers"] = headers
    return OTLPSpanExporter(**kwargs)


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Install a global tracer provider exporting spans over OTLP/HTTP, once."""

    global _TRACER_INITIALISED

    if _TRACER_INITIALISED or not settings.otel_enabled:
        return None

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.otel_service_name,
                "deployment.environment": settings.environment,
            }
        )
    )
    provider.add_span_processor(BatchSpanProcessor(_exporter(settings)))
    trace.set_tracer_provider(provider)
    _TRACER_INITIALISED = True
    logging.getLogger(TRACKER_LOGGER).info("Tracing enabled for %s", settings.otel_service_name)
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    """Flush pending spans and shut the provider down."""

    global _TRACER_INITIALISED

    if provider is None:
        return
    provider.shutdown()
    _TRACER_INITIALISED = False
