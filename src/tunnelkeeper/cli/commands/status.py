from __future__ import annotations

from datetime import datetime

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ...bootstrap import create_manager
from ...core.exceptions import TunnelError
from ...core.models import Tunnel, TunnelStatus
from ...network.manager import TunnelManager

console = Console()


async def status_tunnel_async(tunnel_ref: str | None = None) -> None:
    """Show tunnel status."""
    manager = await create_manager()

    try:
        if tunnel_ref:
            _show_tunnel_details(manager.get_tunnel(tunnel_ref))
        else:
            _show_tunnels_overview(manager)

    except TunnelError as e:
        console.print(f"[red]Error getting tunnel status: {e}")
    finally:
        await manager.close()


async def check_daemon_async() -> None:
    """Report whether the daemon binary is installed."""
    manager = await create_manager()

    try:
        info = await manager.get_daemon_info()
    finally:
        await manager.close()

    if not info.installed:
        console.print(
            f"[red]✗ {manager.settings.daemon_binary} is not installed or not runnable"
        )
        return

    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column("Property", style="bold")
    table.add_column("Value")
    table.add_row("Version", info.version or "unknown")
    table.add_row("Path", info.path or "-")
    console.print(Panel(table, title="Daemon", border_style="green"))

def _show_tunnel_details(tunnel: Tunnel) -> None:
    """Show detailed status for a specific tunnel."""
    status_color = get_status_color(tunnel.status)

    info_table = Table(show_header=False, box=None, padding=(0, 1))
    info_table.add_column("Property", style="bold")
    info_table.add_column("Value")

    info_table.add_row("Tunnel ID", tunnel.id)
    info_table.add_row("Name", tunnel.name)
    info_table.add_row("Status", Text(tunnel.status.value, style=status_color))
    info_table.add_row("Description", tunnel.description or "-")
    info_table.add_row("Created", _format_timestamp(tunnel.created_at))
    info_table.add_row("Registry ID", tunnel.registry_id or "(simulated)")
    info_table.add_row("CNAME target", tunnel.url or "-")
    info_table.add_row("Config file", str(tunnel.config_path))

    if tunnel.error_message:
        info_table.add_row("Error", Text(tunnel.error_message, style="red"))

    console.print(Panel(info_table, title="Tunnel Status", border_style=status_color))

    if not tunnel.routes:
        console.print("[dim]No routes configured[/dim]")
        return

    routes_table = Table(title="Routes")
    routes_table.add_column("ID", style="cyan", no_wrap=True)
    routes_table.add_column("Hostname", style="magenta")
    routes_table.add_column("Service", style="blue")
    routes_table.add_column("Protocol", style="red")

    for route in tunnel.routes:
        routes_table.add_row(
            route.id, route.hostname, route.service, route.protocol.value.upper()
        )

    console.print(routes_table)


def _show_tunnels_overview(manager: TunnelManager) -> None:
    """Show overview of all tunnels."""
    tunnels = manager.list_tunnels()

    if not tunnels:
        console.print("[yellow]No tunnels found[/yellow]")
        return

    status_counts: dict[str, int] = {}
    for tunnel in tunnels:
        status = tunnel.status.value
        status_counts[status] = status_counts.get(status, 0) + 1

    table = Table(title="Tunnel Overview")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="magenta")
    table.add_column("Status")
    table.add_column("Type", style="blue")
    table.add_column("Routes", style="white")

    for tunnel in tunnels:
        table.add_row(
            tunnel.id,
            tunnel.name,
            Text(tunnel.status.value, style=get_status_color(tunnel.status)),
            "registry" if tunnel.is_registry_backed else "simulated",
            ", ".join(route.hostname for route in tunnel.routes) or "-",
        )

    console.print(table)

    summary_text = []
    for status, count in status_counts.items():
        color = get_status_color(status)
        summary_text.append(f"[{color}]{count} {status}[/{color}]")

    console.print(f"\n[bold]Summary:[/bold] {' | '.join(summary_text)}")


def get_status_color(status: TunnelStatus | str) -> str:
    """Get color for tunnel status."""
    colors = {
        "running": "green",
        "starting": "yellow",
        "stopping": "yellow",
        "stopped": "red",
        "error": "bright_red",
    }
    return colors.get(str(status).lower(), "white")


def _format_timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S")
