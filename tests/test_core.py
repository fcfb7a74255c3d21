import logging

from apps.tracker.core.config import Settings
from apps.tracker.core.logging import (
    TRACKER_LOGGER,
    build_logging_config,
    configure_logging,
    init_tracer,
    logger_levels,
    parse_pairs,
)
from apps.tracker.main import _to_asyncpg_dsn


def test_parse_pairs_skips_malformed_items():
    assert parse_pairs(None) == {}
    assert parse_pairs("api-key=abc, tenant = acme,broken,=x") == {"api-key": "abc", "tenant": "acme"}


def test_tracker_loggers_default_to_root_level():
    levels = logger_levels(Settings(log_level="warning"))

    assert levels[TRACKER_LOGGER] == logging.WARNING
    assert levels["sqlalchemy.engine"] == logging.WARNING


def test_tracker_level_and_overrides_are_applied():
    settings = Settings(
        log_level="info",
        tracker_log_level="debug",
        database_echo=True,
        logger_levels="apps.tracker.services.store=ERROR,uvicorn.access=bogus",
    )

    levels = logger_levels(settings)

    assert levels[TRACKER_LOGGER] == logging.DEBUG
    assert levels["sqlalchemy.engine"] == logging.INFO
    assert levels["apps.tracker.services.store"] == logging.ERROR
    assert levels["uvicorn.access"] == logging.INFO
    assert build_logging_config(settings)["loggers"][TRACKER_LOGGER] == {"level": logging.DEBUG}


def test_configure_logging_returns_tracker_logger():
    logger = configure_logging(Settings(log_level="info", tracker_log_level="debug"))

    assert logger.name == TRACKER_LOGGER
    assert logger.level == logging.DEBUG
    assert logging.getLogger().level == logging.INFO


def test_tracer_is_not_initialised_when_disabled():
    assert init_tracer(Settings(otel_enabled=False)) is None


def test_postgres_dsn_is_converted_to_asyncpg():
    assert _to_asyncpg_dsn("postgresql://u:p@db/tracker") == "postgresql+asyncpg://u:p@db/tracker"
    assert _to_asyncpg_dsn("postgresql+asyncpg://u:p@db/tracker") == "postgresql+asyncpg://u:p@db/tracker"
    assert _to_asyncpg_dsn("sqlite+aiosqlite:///tracker.db") == "sqlite+aiosqlite:///tracker.db"
