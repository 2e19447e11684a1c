import io
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from tunnelkeeper.core.events import EventBus, EventType
from tunnelkeeper.core.models import LogLevel
from tunnelkeeper.utils.logging import LogBuffer, get_logger, setup_logging


@pytest.fixture
def log_buffer():
    buffer = LogBuffer(capacity=3)
    buffer.install()
    yield buffer
    buffer.uninstall()


@pytest.mark.unit
class TestEventBus:
    def test_sync_handlers_called_inline(self):
        bus = EventBus()
        handler = MagicMock()
        bus.subscribe(EventType.TUNNEL_UPDATED, handler)

        bus.emit(EventType.TUNNEL_UPDATED, {"id": "tunnel-1"})

        handler.assert_called_once_with({"id": "tunnel-1"})

    @pytest.mark.asyncio
    async def test_async_handlers_are_scheduled(self):
        bus = EventBus()
        handler = AsyncMock()
        bus.subscribe(EventType.DAEMON_LOG, handler)

        bus.emit(EventType.DAEMON_LOG, {"line": "hello"})
        await bus.drain()

        handler.assert_awaited_once_with({"line": "hello"})

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_reach_emitter(self, log_buffer):
        bus = EventBus()
        after = MagicMock()
        bus.subscribe(EventType.TUNNEL_UPDATED, MagicMock(side_effect=ValueError("bad")))
        bus.subscribe(EventType.TUNNEL_UPDATED, after)

        bus.emit(EventType.TUNNEL_UPDATED, {})

        after.assert_called_once_with({})
        assert log_buffer.entries(LogLevel.ERROR)[0].message == (
            "Error in tunnel-updated handler: bad"
        )

    def test_unsubscribe(self):
        bus = EventBus()
        handler = MagicMock()
        bus.subscribe(EventType.NEW_LOG, handler)
        bus.unsubscribe(EventType.NEW_LOG, handler)
        bus.unsubscribe(EventType.NEW_LOG, handler)

        bus.emit(EventType.NEW_LOG, "entry")

        handler.assert_not_called()


@pytest.mark.unit
class TestLogBuffer:
    def test_buffer_is_bounded(self, log_buffer):
        logger = get_logger("tunnelkeeper.tests")
        for i in range(5):
            logger.info(f"message {i}")

        assert len(log_buffer) == 3
        assert [e.message for e in log_buffer.entries()] == [
            "message 2",
            "message 3",
            "message 4",
        ]

    def test_levels_are_mapped(self, log_buffer):
        logger = get_logger("tunnelkeeper.tests")
        logger.debug("not captured")
        logger.info("info")
        logger.warning("warn")
        logger.critical("critical")

        assert [e.level for e in log_buffer.entries()] == [
            LogLevel.INFO,
            LogLevel.WARN,
            LogLevel.ERROR,
        ]
        assert [e.message for e in log_buffer.entries("warn")] == ["warn"]
        assert len(log_buffer.entries("all")) == 3

    def test_on_entry_callback(self):
        received = []
        buffer = LogBuffer(on_entry=received.append)
        buffer.install()
        try:
            get_logger("tunnelkeeper.tests").error("boom")
        finally:
            buffer.uninstall()

        assert [(e.level, e.message) for e in received] == [(LogLevel.ERROR, "boom")]

    def test_clear(self, log_buffer):
        get_logger("tunnelkeeper.tests").info("something")
        log_buffer.clear()

        assert log_buffer.entries() == []


@pytest.mark.unit
class TestSetupLogging:
    def test_console_handler(self):
        stream = io.StringIO()
        try:
            setup_logging(logging.INFO, stream=stream)
            get_logger("tunnelkeeper.tests").info("visible")
        finally:
            setup_logging()

        output = stream.getvalue()
        assert "tunnelkeeper.tests - INFO - visible" in output

    def test_silent_by_default(self):
        stream = io.StringIO()
        setup_logging(stream=stream)

        get_logger("tunnelkeeper.tests").error("hidden")

        assert stream.getvalue() == ""
        assert logging.getLogger("aiohttp").level > logging.CRITICAL

    def test_buffer_survives_setup(self, log_buffer):
        setup_logging(logging.WARNING, stream=io.StringIO())
        get_logger("tunnelkeeper.tests").info("kept")
        setup_logging()

        assert log_buffer.entries()[-1].message == "kept"
