"""
Unit tests for system event emission.
"""

import logging

import pytest

from reltrack.events import EventLogger, LoggingEventLogger, emit_event


class BrokenEventLogger(EventLogger):
    async def log_system_event(self, event_name, payload):
        raise ConnectionError("collector down")


class TestEvents:
    """Tests for EventLogger implementations and emit_event."""

    @pytest.mark.asyncio
    async def test_logging_event_logger(self, caplog):
        caplog.set_level(logging.INFO, logger="reltrack.events")

        await LoggingEventLogger().log_system_event("log_rotation_completed", {"archiveFile": "a.zip"})

        record = caplog.records[-1]
        assert record.getMessage() == "log_rotation_completed"
        assert record.payload == {"archiveFile": "a.zip"}

    @pytest.mark.asyncio
    async def test_emit_event_swallows_consumer_errors(self, caplog):
        await emit_event(BrokenEventLogger(), "log_rotation_failed", {"error": "x"})

        assert "collector down" in caplog.text

    @pytest.mark.asyncio
    async def test_emit_event_without_logger(self):
        await emit_event(None, "log_rotation_failed", {})

    def test_event_logger_is_a_protocol(self):
        assert isinstance(LoggingEventLogger(), EventLogger)
        assert not isinstance(object(), EventLogger)

        with pytest.raises(TypeError):
            EventLogger()
