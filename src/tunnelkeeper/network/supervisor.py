"""Lifecycle state machine for tunnel daemons."""

from __future__ import annotations

import asyncio
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ..core.exceptions import (
    StartTimeoutError,
    TunnelError,
    TunnelStartupError,
    TunnelStateError,
)
from ..core.models import (
    STARTABLE_STATUSES,
    STOPPABLE_STATUSES,
    LogLevel,
    Tunnel,
    TunnelStatus,
)
from ..core.settings import Settings
from ..utils.logging import LEVEL_NUMBERS, get_logger
from .daemon import (
    DaemonHandle,
    DaemonProcess,
    SimulatedRun,
    classify_line,
    is_connected_signal,
    spawn_daemon,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = get_logger("tunnelkeeper.network.supervisor")


class ProcessSupervisor:
    """
    Drives tunnels through stopped -> starting -> running -> stopping.\n
    Owns the table of live handles keyed by tunnel id. Tunnel records stay
    owned by the caller; every state change is reported through on_change,
    which is expected to persist and broadcast it. Callers serialize
    operations on the same tunnel id.
    Attributes:
        settings (Settings): Timings and the daemon binary.
        on_change: Awaited after every state change of a tunnel.
        prepare_config: Awaited to regenerate a missing config file.
        on_output: Called with every classified line of daemon output.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        on_change: Callable[[Tunnel], Awaitable[None]] | None = None,
        prepare_config: Callable[[Tunnel], Awaitable[Path]] | None = None,
        on_output: Callable[[Tunnel, LogLevel, str], None] | None = None,
    ) -> None:
        """Initialize the supervisor."""
        self.settings = settings or Settings()
        self.on_change = on_change
        self.prepare_config = prepare_config
        self.on_output = on_output
        self._handles: dict[str, DaemonHandle] = {}
        self._watchdogs: dict[str, asyncio.Task[Any]] = {}

    def get_handle(self, tunnel_id: str) -> DaemonHandle | None:
        return self._handles.get(tunnel_id)

    def has_live_handle(self, tunnel_id: str) -> bool:
        """Whether a handle exists for the tunnel and has not been terminated."""
        handle = self._handles.get(tunnel_id)
        return handle is not None and handle.is_alive

    async def start(self, tunnel: Tunnel) -> None:
        """
        Start a stopped or failed tunnel.

        Registry-backed tunnels launch cloudflared and stay starting until the
        daemon reports a registered connection. Other tunnels are promoted
        to running by a timer.

        Raises:
            TunnelStateError: If the tunnel is not stopped or in error.
            TunnelStartupError: If the config or the daemon cannot be set up.
        """
        if tunnel.status not in STARTABLE_STATUSES:
            raise TunnelStateError(
                f"Tunnel '{tunnel.name}' is {tunnel.status.value} and cannot be started"
            )

        logger.info(f"Starting tunnel {tunnel.name}")
        tunnel.status = TunnelStatus.STARTING
        tunnel.error_message = None
        await self._changed(tunnel)

        if not tunnel.is_registry_backed:
            run = SimulatedRun(tunnel_id=tunnel.id)
            self._handles[tunnel.id] = run
            run.task = asyncio.create_task(self._promote_simulated(tunnel, run))
            return

        try:
            config_path = Path(tunnel.config_path)
            if not config_path.exists():
                logger.warning(f"Config file missing, regenerating: {config_path}")
                if self.prepare_config is None:
                    raise TunnelStartupError(f"Config file {config_path} is missing")
                config_path = await self.prepare_config(tunnel)

            handle = await spawn_daemon(
                tunnel.id,
                self.settings.daemon_binary,
                config_path,
                on_line=partial(self._on_daemon_line, tunnel),
                on_exit=partial(self._on_daemon_exit, tunnel),
            )
        except TunnelError as e:
            logger.error(f"Failed to start tunnel {tunnel.name}: {e}")
            self._handles.pop(tunnel.id, None)
            tunnel.status = TunnelStatus.ERROR
            tunnel.error_message = str(e)
            await self._changed(tunnel)
            raise

        self._handles[tunnel.id] = handle

        if self.settings.start_timeout is not None:
            self._watchdogs[tunnel.id] = asyncio.create_task(
                self._watch_start(tunnel, handle, self.settings.start_timeout)
            )

    async def stop(self, tunnel: Tunnel) -> None:
        """
        Stop a running, starting or failed tunnel.

        Sends SIGTERM to a live daemon (SIGKILL after kill_timeout), then
        marks the tunnel stopped once the stop_grace window has passed,
        whether or not the daemon has exited by then.

        Raises:
            TunnelStateError: If the tunnel is already stopped or stopping.
        """
        if tunnel.status not in STOPPABLE_STATUSES:
            raise TunnelStateError(
                f"Tunnel '{tunnel.name}' is {tunnel.status.value} and cannot be stopped"
            )

        logger.info(f"Stopping tunnel {tunnel.name}")
        tunnel.status = TunnelStatus.STOPPING
        await self._changed(tunnel)

        self._cancel_watchdog(tunnel.id)
        handle = self._handles.get(tunnel.id)
        if handle is not None and handle.is_alive:
            await handle.terminate(self.settings.kill_timeout)

        await asyncio.sleep(self.settings.stop_grace)

        self._handles.pop(tunnel.id, None)
        tunnel.status = TunnelStatus.STOPPED
        await self._changed(tunnel)
        logger.info(f"Tunnel {tunnel.name} stopped")

    async def restart(self, tunnel: Tunnel) -> None:
        """Stop (when active), wait restart_delay, then start again."""
        if tunnel.status in STOPPABLE_STATUSES:
            await self.stop(tunnel)

        await asyncio.sleep(self.settings.restart_delay)
        await self.start(tunnel)

    async def wait_until_running(
        self, tunnel: Tunnel, timeout: float | None = None, poll: float = 0.1
    ) -> None:
        """
        Block until a starting tunnel settles.

        Raises:
            StartTimeoutError: If the tunnel is still starting after timeout.
            TunnelStartupError: If it ended in error or stopped instead.
        """
        try:
            async with asyncio.timeout(timeout):
                while tunnel.status == TunnelStatus.STARTING:
                    await asyncio.sleep(poll)
        except TimeoutError as e:
            raise StartTimeoutError(
                f"Tunnel '{tunnel.name}' did not connect within {timeout}s"
            ) from e

        if tunnel.status != TunnelStatus.RUNNING:
            raise TunnelStartupError(
                tunnel.error_message
                or f"Tunnel '{tunnel.name}' is {tunnel.status.value}"
            )

    async def forget(self, tunnel_id: str) -> None:
        """Drop a tunnel's handle, terminating whatever is still attached."""
        self._cancel_watchdog(tunnel_id)
        handle = self._handles.pop(tunnel_id, None)
        if handle is not None and handle.is_alive:
            await handle.terminate(self.settings.kill_timeout)

    async def shutdown(self) -> None:
        """Terminate every handle and wait for the daemons to go away."""
        handles = list(self._handles.values())
        for tunnel_id in list(self._handles):
            await self.forget(tunnel_id)

        daemons = [h.wait_closed() for h in handles if isinstance(h, DaemonProcess)]
        if daemons:
            await asyncio.gather(*daemons, return_exceptions=True)

    async def _on_daemon_line(
        self, tunnel: Tunnel, handle: DaemonProcess, line: str
    ) -> None:
        level = classify_line(line)
        logger.log(LEVEL_NUMBERS[level], f"[{tunnel.name}] {line}")

        if self.on_output is not None:
            self.on_output(tunnel, level, line)

        if (
            is_connected_signal(line)
            and self._handles.get(tunnel.id) is handle
            and tunnel.status == TunnelStatus.STARTING
        ):
            self._cancel_watchdog(tunnel.id)
            tunnel.status = TunnelStatus.RUNNING
            await self._changed(tunnel)
            logger.info(f"Tunnel {tunnel.name} connected")

    async def _on_daemon_exit(
        self, tunnel: Tunnel, handle: DaemonProcess, returncode: int | None
    ) -> None:
        logger.info(f"Daemon for tunnel {tunnel.name} exited with code {returncode}")

        if self._handles.get(tunnel.id) is not handle:
            return

        del self._handles[tunnel.id]
        self._cancel_watchdog(tunnel.id)
        tunnel.status = TunnelStatus.STOPPED
        await self._changed(tunnel)

    async def _promote_simulated(self, tunnel: Tunnel, run: SimulatedRun) -> None:
        await asyncio.sleep(self.settings.simulated_start_delay)

        if self._handles.get(tunnel.id) is not run:
            return
        if tunnel.status != TunnelStatus.STARTING:
            return

        tunnel.status = TunnelStatus.RUNNING
        try:
            await self._changed(tunnel)
        except TunnelError as e:
            logger.error(f"Failed to record start of tunnel {tunnel.name}: {e}")
            return
        logger.info(f"Tunnel {tunnel.name} started (simulated)")

    async def _watch_start(
        self, tunnel: Tunnel, handle: DaemonProcess, timeout: float
    ) -> None:
        await asyncio.sleep(timeout)

        if self._handles.get(tunnel.id) is not handle:
            return
        if tunnel.status != TunnelStatus.STARTING:
            return

        error = StartTimeoutError(
            f"StartTimeout: tunnel '{tunnel.name}' did not register a connection "
            f"within {timeout}s"
        )
        logger.error(str(error))

        self._watchdogs.pop(tunnel.id, None)
        self._handles.pop(tunnel.id, None)
        tunnel.status = TunnelStatus.ERROR
        tunnel.error_message = str(error)

        try:
            await self._changed(tunnel)
        finally:
            await handle.terminate(self.settings.kill_timeout)

    def _cancel_watchdog(self, tunnel_id: str) -> None:
        task = self._watchdogs.pop(tunnel_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _changed(self, tunnel: Tunnel) -> None:
        if self.on_change is not None:
            await self.on_change(tunnel)
