"""
Create, list and delete tunnels.
"""

from __future__ import annotations

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.prompt import Confirm
from rich.table import Table
from rich.text import Text

from ...bootstrap import create_manager
from ...core.exceptions import TunnelError
from .status import get_status_color

console = Console()


def _parse_route(raw: str) -> dict[str, str]:
    hostname, sep, service = raw.partition("=")
    if not sep:
        raise TunnelError(f"Invalid route '{raw}': expected HOSTNAME=SERVICE")
    return {"hostname": hostname, "service": service}


async def create_tunnel_async(
    name: str,
    description: str = "",
    use_registry: bool = False,
    routes: list[str] | None = None,
) -> None:
    """Create a tunnel and print its details."""
    manager = await create_manager()

    try:
        parsed_routes = [_parse_route(raw) for raw in routes or []]

        with console.status("[bold green]Creating tunnel..."):
            tunnel = await manager.create_tunnel(
                name,
                description=description,
                use_registry=use_registry,
                routes=parsed_routes,
            )

        console.print("\n[bold green]✓ Tunnel created successfully!")
        console.print(f"\n[bold]Tunnel ID:[/bold] [cyan]{tunnel.id}")
        console.print(f"[bold]Tunnel Name:[/bold] [cyan]{tunnel.name}")

        if tunnel.is_registry_backed:
            console.print(f"[bold]Registry ID:[/bold] [cyan]{tunnel.registry_id}")
            console.print(f"[bold]CNAME target:[/bold] [cyan]{tunnel.url}")
            console.print(f"[bold]Config file:[/bold] [cyan]{tunnel.config_path}")
        else:
            console.print(
                "[dim]Simulated tunnel: no daemon will be launched for it.[/dim]"
            )

        for route in tunnel.routes:
            console.print(f"  [magenta]{route.hostname}[/magenta] → {route.service}")

    except TunnelError as e:
        console.print(f"\n[red]Error creating tunnel - {e}")
    finally:
        await manager.close()


async def list_tunnels_async() -> None:
    """List all tunnels."""
    manager = await create_manager()

    try:
        tunnels = manager.list_tunnels()

        if not tunnels:
            console.print("[yellow]No tunnels found[/yellow]")
            return

        table = Table(title="Tunnels")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Name", style="magenta")
        table.add_column("Status")
        table.add_column("Routes", style="blue")
        table.add_column("CNAME target", style="yellow")

        for tunnel in tunnels:
            table.add_row(
                tunnel.id,
                tunnel.name,
                Text(tunnel.status.value, style=get_status_color(tunnel.status)),
                str(len(tunnel.routes)),
                tunnel.url or "-",
            )

        console.print(table)

    finally:
        await manager.close()


async def delete_tunnel_async(tunnel_ref: str, force: bool = False) -> None:
    """Delete a tunnel, cleaning up its registry object when possible."""
    manager = await create_manager()

    try:
        tunnel = manager.get_tunnel(tunnel_ref)

        if not force and not Confirm.ask(
            f"[yellow]Delete tunnel '{tunnel.name}'?[/yellow]"
        ):
            console.print("[dim]Cancelled[/dim]")
            return

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task("Deleting tunnel...", total=None)
            await manager.delete_tunnel(tunnel.id)
            progress.update(task, description="Tunnel deleted")

        console.print(f"[green]✓[/green] Tunnel deleted: {tunnel.name}")

    except TunnelError as e:
        console.print(f"[red]Error: {e}")
    finally:
        await manager.close()


async def show_stats_async() -> None:
    """Print counts of tunnels by status."""
    manager = await create_manager()

    try:
        stats = manager.get_tunnel_stats()

        table = Table(show_header=False, box=None, padding=(0, 1))
        table.add_column("Metric", style="bold")
        table.add_column("Value", style="cyan")
        table.add_row("Total", str(stats.total))
        table.add_row("Running", str(stats.running))
        table.add_row("Stopped", str(stats.stopped))
        table.add_row("Error", str(stats.error))

        console.print(table)

    finally:
        await manager.close()
