"""Supervise tunnels in the foreground."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

from rich.console import Console
from rich.markup import escape

from ...bootstrap import create_manager
from ...core.events import EventType
from ...core.exceptions import TunnelError, TunnelStartupError
from ...core.models import LogLevel, Tunnel, TunnelStatus
from ...network.manager import TunnelManager

console = Console()

ACTIVE = (TunnelStatus.STARTING, TunnelStatus.RUNNING)

LEVEL_COLORS = {
    LogLevel.INFO.value: "dim",
    LogLevel.WARN.value: "yellow",
    LogLevel.ERROR.value: "red",
}


async def start_tunnels_async(
    tunnel_refs: list[str], wait: float | None = None
) -> None:
    """
    Start tunnels and keep them running until interrupted.

    Daemon output is streamed to the console. Ctrl+C stops every tunnel
    started here.
    """
    manager = await create_manager()
    names: dict[str, str] = {}

    def _print_daemon_line(payload: dict[str, Any]) -> None:
        name = names.get(payload["tunnel_id"], payload["tunnel_id"])
        color = LEVEL_COLORS.get(payload["level"], "white")
        console.print(
            f"[dim]{datetime.now().strftime('%H:%M:%S')}[/dim]  "
            f"[cyan]{name:16.16}[/cyan]  [{color}]{escape(payload['line'])}[/{color}]",
            highlight=False,
        )

    manager.events.subscribe(EventType.DAEMON_LOG, _print_daemon_line)

    try:
        for ref in tunnel_refs:
            try:
                tunnel = await manager.start_tunnel(ref)
            except TunnelError as e:
                console.print(f"[red]Error starting '{ref}': {e}")
                continue

            names[tunnel.id] = tunnel.name
            console.print(f"[green]✓[/green] Starting tunnel: {tunnel.name}")

        if not names:
            return

        for tunnel_id, name in names.items():
            try:
                await manager.wait_until_running(tunnel_id, timeout=wait)
                console.print(f"[bold green]Tunnel {name} is running")
            except TunnelStartupError as e:
                console.print(f"[red]Tunnel {name} did not start: {e}")

        console.print("\n[dim]Press Ctrl+C to stop the tunnels[/dim]")
        console.print("[dim]" + "=" * 80 + "[/dim]")

        while any(t.status in ACTIVE for t in _started(manager, names)):
            await asyncio.sleep(1)

        console.print("[yellow]All tunnels have exited")

    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("\n[bold yellow]Stopping tunnels...")
    finally:
        manager.events.unsubscribe(EventType.DAEMON_LOG, _print_daemon_line)
        await manager.close()
        if names:
            console.print("[bold green]Tunnels stopped")


def _started(manager: TunnelManager, names: dict[str, str]) -> list[Tunnel]:
    return [t for t in manager.list_tunnels() if t.id in names]
