"""Tests for structlog configuration and scoped log context."""

import structlog

from anime_spine.core.logging import (
    LogContext,
    _add_service_metadata,
    bind_context,
    configure_logging,
    get_logger,
    unbind_context,
)


class TestLogContext:
    def test_binds_and_unbinds(self):
        with LogContext(run_id="run-1", run_type="initial_load"):
            bound = structlog.contextvars.get_contextvars()
            assert bound["run_id"] == "run-1"
            assert bound["run_type"] == "initial_load"
        assert "run_id" not in structlog.contextvars.get_contextvars()

    def test_bind_and_unbind_helpers(self):
        bind_context(entity_id="abc")
        assert structlog.contextvars.get_contextvars()["entity_id"] == "abc"
        unbind_context("entity_id")
        assert "entity_id" not in structlog.contextvars.get_contextvars()


class TestConfigureLogging:
    def test_service_name_added_to_events(self):
        configure_logging("INFO", json_format=True, service="anime-spine-test")
        try:
            event = _add_service_metadata(None, "info", {"event": "test.event"})
            assert event["service"] == "anime-spine-test"
        finally:
            configure_logging("INFO", json_format=True)

    def test_explicit_service_is_kept(self):
        event = _add_service_metadata(None, "info", {"event": "x", "service": "other"})
        assert event["service"] == "other"

    def test_get_logger_returns_bindable_logger(self):
        logger = get_logger("tests").bind(entity_id="abc")
        assert logger is not None
