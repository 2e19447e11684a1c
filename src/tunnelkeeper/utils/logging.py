"""Logging utility for tunnelkeeper."""

from __future__ import annotations

import logging
import sys
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TextIO

from ..core.models import LogEntry, LogLevel

ROOT_LOGGER_NAME = "tunnelkeeper"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """
    Get a logger with the specified name.

    Args:
        name: The name of the logger. Defaults to "tunnelkeeper".

    Returns:
        A logger instance.
    """
    return logging.getLogger(name)


def setup_logging(
    level: int = logging.CRITICAL + 1, stream: TextIO = sys.stderr
) -> None:
    """
    Set up console logging.

    The package logger itself stays at INFO or lower so that the
    in-memory log buffer keeps receiving records while the console is
    silent.

    Args:
        level: The console logging level. Defaults to CRITICAL + 1 (silent).
        stream: The stream to write logs to. Defaults to sys.stderr.
    """
    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    package_logger.setLevel(min(level, logging.INFO))

    for handler in package_logger.handlers[:]:
        if not isinstance(handler, LogBuffer):
            package_logger.removeHandler(handler)

    if level <= logging.CRITICAL:
        handler = logging.StreamHandler(stream)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.setLevel(level)
        package_logger.addHandler(handler)

    noisy_loggers = [
        "aiohttp",
        "aiohttp.client",
        "aiohttp.internal",
        "asyncio",
    ]

    for logger_name in noisy_loggers:
        logging.getLogger(logger_name).setLevel(logging.CRITICAL + 1)

    package_logger.propagate = False


LEVEL_NUMBERS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


def level_for_record(levelno: int) -> LogLevel:
    """Map a stdlib logging level onto the three control surface levels."""
    if levelno >= logging.ERROR:
        return LogLevel.ERROR
    if levelno >= logging.WARNING:
        return LogLevel.WARN
    return LogLevel.INFO


class LogBuffer(logging.Handler):
    """
    Bounded in-memory log history.\n
    Captures INFO and above from the package logger into a ring buffer
    and forwards every new entry to an optional callback.
    Attributes:
        capacity (int): Maximum number of entries retained.
        on_entry (Callable[[LogEntry], None] | None): Called for each new entry.
    """

    def __init__(
        self,
        capacity: int = 1000,
        on_entry: Callable[[LogEntry], None] | None = None,
    ) -> None:
        super().__init__(level=logging.INFO)
        self.capacity = capacity
        self.on_entry = on_entry
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._notifying = False

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = LogEntry(
                timestamp=datetime.fromtimestamp(record.created, UTC),
                level=level_for_record(record.levelno),
                message=record.getMessage(),
            )
        except Exception:
            self.handleError(record)
            return

        self._entries.append(entry)

        if self.on_entry is not None and not self._notifying:
            self._notifying = True
            try:
                self.on_entry(entry)
            except Exception:
                self.handleError(record)
            finally:
                self._notifying = False

    def entries(self, level: LogLevel | str | None = None) -> list[LogEntry]:
        """Return captured entries, optionally only those of one level."""
        if level is None or level == "all":
            return list(self._entries)
        wanted = LogLevel(level)
        return [entry for entry in self._entries if entry.level == wanted]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def install(self, logger_name: str = ROOT_LOGGER_NAME) -> None:
        """Attach to a logger, lowering its level to INFO when needed."""
        target = logging.getLogger(logger_name)
        if target.getEffectiveLevel() > logging.INFO:
            target.setLevel(logging.INFO)
        if self not in target.handlers:
            target.addHandler(self)

    def uninstall(self, logger_name: str = ROOT_LOGGER_NAME) -> None:
        logging.getLogger(logger_name).removeHandler(self)
