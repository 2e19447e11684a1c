"""
Daemon process handles and output classification.
"""

from __future__ import annotations

import asyncio
import contextlib
import re
import shutil
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..core.constants import (
    CONNECTED_MARKER,
    KILL_TIMEOUT_SECONDS,
    VERSION_CHECK_TIMEOUT_SECONDS,
    VERSION_PREFIX,
)
from ..core.exceptions import ProcessSpawnError
from ..core.models import DaemonInfo, LogLevel
from ..utils.logging import get_logger

logger = get_logger("tunnelkeeper.network.daemon")

LineCallback = Callable[["DaemonProcess", str], Awaitable[None]]
ExitCallback = Callable[["DaemonProcess", int | None], Awaitable[None]]

_LEVEL_TOKEN_RE = re.compile(r"\b(INF|WRN|ERR)\b")
_TOKEN_LEVELS = {"INF": LogLevel.INFO, "WRN": LogLevel.WARN, "ERR": LogLevel.ERROR}


def classify_line(line: str) -> LogLevel:
    """
    Level of one line of daemon output.

    The first INF/WRN/ERR token decides; lines without one are info.
    """
    match = _LEVEL_TOKEN_RE.search(line)
    if match is None:
        return LogLevel.INFO
    return _TOKEN_LEVELS[match.group(1)]


def is_connected_signal(line: str) -> bool:
    """Whether a line reports a registered edge connection."""
    return CONNECTED_MARKER in line.lower()


def daemon_command(binary: str, config_path: Path) -> list[str]:
    return [binary, "tunnel", "--config", str(config_path), "run"]


@dataclass(eq=False)
class SimulatedRun:
    """Handle for a tunnel without a daemon: just its promotion timer."""

    tunnel_id: str
    task: asyncio.Task[Any] | None = None

    pid = None

    @property
    def is_alive(self) -> bool:
        return self.task is not None and not self.task.cancelled()

    async def terminate(self, kill_timeout: float = KILL_TIMEOUT_SECONDS) -> None:
        if self.task is not None and not self.task.done():
            self.task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self.task
        self.task = None


@dataclass(eq=False)
class DaemonProcess:
    """
    A running cloudflared process.\n
    Reads the merged stdout/stderr stream line by line, hands every line
    to on_line and reports the exit code to on_exit once the stream ends.
    Attributes:
        tunnel_id (str): Owning tunnel.
        process (asyncio.subprocess.Process): The child process.
        on_line (LineCallback): Called with the handle and each decoded line.
        on_exit (ExitCallback): Called once with the handle and exit code.
    """

    tunnel_id: str
    process: asyncio.subprocess.Process
    on_line: LineCallback
    on_exit: ExitCallback
    _reader_task: asyncio.Task[Any] | None = field(default=None, repr=False)
    _kill_task: asyncio.Task[Any] | None = field(default=None, repr=False)
    _terminating: bool = field(default=False, repr=False)

    @property
    def pid(self) -> int | None:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    @property
    def is_alive(self) -> bool:
        return self.process.returncode is None and not self._terminating

    def watch(self) -> None:
        """Start the background reader."""
        if self._reader_task is None:
            self._reader_task = asyncio.create_task(self._read_output())

    async def _read_output(self) -> None:
        stream = self.process.stdout
        try:
            if stream is not None:
                while True:
                    raw = await stream.readline()
                    if not raw:
                        break
                    line = raw.decode("utf-8", errors="replace").rstrip()
                    if not line:
                        continue
                    try:
                        await self.on_line(self, line)
                    except Exception as e:
                        logger.error(f"Error handling daemon output: {e}")

            returncode = await self.process.wait()
        except asyncio.CancelledError:
            return

        try:
            await self.on_exit(self, returncode)
        except Exception as e:
            logger.error(f"Error handling daemon exit: {e}")

    async def terminate(self, kill_timeout: float = KILL_TIMEOUT_SECONDS) -> None:
        """
        Send SIGTERM and escalate to SIGKILL if the process outlives kill_timeout.

        Returns as soon as the signal is sent; the escalation runs in the
        background.
        """
        self._terminating = True
        if self.process.returncode is not None:
            return

        with contextlib.suppress(ProcessLookupError):
            self.process.terminate()

        if self._kill_task is None:
            self._kill_task = asyncio.create_task(self._escalate(kill_timeout))

    async def _escalate(self, kill_timeout: float) -> None:
        try:
            await asyncio.wait_for(self.process.wait(), timeout=kill_timeout)
        except TimeoutError:
            logger.warning(
                f"Daemon for {self.tunnel_id} ignored SIGTERM for "
                f"{kill_timeout}s, sending SIGKILL"
            )
            with contextlib.suppress(ProcessLookupError):
                self.process.kill()
        except asyncio.CancelledError:
            pass

    async def wait_closed(self) -> None:
        """Wait for the reader and any kill escalation to finish."""
        for task in (self._reader_task, self._kill_task):
            if task is not None:
                with contextlib.suppress(asyncio.CancelledError):
                    await task


DaemonHandle = DaemonProcess | SimulatedRun


async def spawn_daemon(
    tunnel_id: str,
    binary: str,
    config_path: Path,
    on_line: LineCallback,
    on_exit: ExitCallback,
) -> DaemonProcess:
    """
    Launch cloudflared for a config file and start watching its output.

    Raises:
        ProcessSpawnError: If the executable cannot be started.
    """
    command = daemon_command(binary, config_path)
    logger.info(f"Launching daemon: {' '.join(command)}")

    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as e:
        raise ProcessSpawnError(f"Failed to launch {binary}: {e}") from e

    handle = DaemonProcess(
        tunnel_id=tunnel_id, process=process, on_line=on_line, on_exit=on_exit
    )
    handle.watch()
    logger.info(f"Daemon for {tunnel_id} started with pid {process.pid}")
    return handle


async def check_daemon(
    binary: str, timeout: float = VERSION_CHECK_TIMEOUT_SECONDS
) -> DaemonInfo:
    """
    Check that the daemon binary can be found and run.

    Resolves the binary on PATH and runs `<binary> --version`. Any failure
    reports the daemon as not installed.
    """
    path = shutil.which(binary)
    if path is None:
        logger.warning(f"{binary} not found on PATH")
        return DaemonInfo(installed=False)

    try:
        process = await asyncio.create_subprocess_exec(
            path,
            "--version",
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as e:
        logger.warning(f"Failed to run {path} --version: {e}")
        return DaemonInfo(installed=False)

    try:
        async with asyncio.timeout(timeout):
            output = await process.stdout.read()
            returncode = await process.wait()
    except TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        logger.warning(f"{path} --version did not finish within {timeout}s")
        return DaemonInfo(installed=False)

    if returncode != 0:
        logger.warning(f"{path} --version exited with code {returncode}")
        return DaemonInfo(installed=False)

    lines = output.decode("utf-8", errors="replace").strip().splitlines()
    version = lines[0].removeprefix(VERSION_PREFIX).strip() if lines else ""
    logger.debug(f"Found {path} version {version or 'unknown'}")
    return DaemonInfo(installed=True, version=version or None, path=path)
