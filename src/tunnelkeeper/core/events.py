"""Fire-and-forget notifications for the control surface."""

from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from ..utils.logging import get_logger

logger = get_logger("tunnelkeeper.core.events")

EventHandler = Callable[[Any], Any]


class EventType(StrEnum):
    """
    Notifications emitted by the supervisor.
    Attributes:
        TUNNEL_UPDATED: Full tunnel record after any state change.
        NEW_LOG: A log entry was captured by the log buffer.
        DAEMON_LOG: A raw line of daemon output.
        SERVICE_STATUS_CHANGED: Cross-checked running state changed.
    """

    TUNNEL_UPDATED = "tunnel-updated"
    NEW_LOG = "new-log"
    DAEMON_LOG = "daemon-log"
    SERVICE_STATUS_CHANGED = "service-status-changed"


class EventBus:
    """
    Dispatches events to subscribed handlers.\n
    Plain functions are called inline; coroutine handlers are scheduled
    on the running loop and never awaited by the emitter. A failing
    handler is logged and does not affect other handlers.
    """

    def __init__(self) -> None:
        self._handlers: dict[EventType, list[EventHandler]] = defaultdict(list)
        self._pending: set[asyncio.Task[Any]] = set()

    def subscribe(self, event: EventType, handler: EventHandler) -> None:
        """Register a handler for an event type."""
        self._handlers[event].append(handler)

    def unsubscribe(self, event: EventType, handler: EventHandler) -> None:
        """Remove a handler, ignoring unknown ones."""
        if handler in self._handlers[event]:
            self._handlers[event].remove(handler)

    def emit(self, event: EventType, payload: Any) -> None:
        """Deliver a payload to every handler of the event type."""
        for handler in list(self._handlers[event]):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    self._schedule(event, result)
            except Exception as e:
                self._report(event, e)

    async def drain(self) -> None:
        """Wait for scheduled coroutine handlers to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _schedule(self, event: EventType, awaitable: Any) -> None:
        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)

        def _done(finished: asyncio.Task[Any]) -> None:
            self._pending.discard(finished)
            if not finished.cancelled() and finished.exception() is not None:
                self._report(event, finished.exception())

        task.add_done_callback(_done)

    def _report(self, event: EventType, error: BaseException | None) -> None:
        # Errors from log listeners are not logged again, that would loop.
        if event == EventType.NEW_LOG:
            return
        logger.error(f"Error in {event.value} handler: {error}")
