from __future__ import annotations

from rich.console import Console

from ...bootstrap import create_manager
from ...core.exceptions import TunnelError

console = Console()


async def add_route_async(
    tunnel_ref: str, hostname: str, service: str, protocol: str = "http"
) -> None:
    """Add a route to a tunnel."""
    manager = await create_manager()

    try:
        route = await manager.add_route(tunnel_ref, hostname, service, protocol)
        console.print(
            f"[green]✓[/green] Route added: [magenta]{route.hostname}[/magenta] "
            f"→ {route.service} [dim]({route.id})[/dim]"
        )
    except TunnelError as e:
        console.print(f"[red]Error adding route: {e}")
    finally:
        await manager.close()


async def update_route_async(
    tunnel_ref: str,
    route_id: str,
    hostname: str | None = None,
    service: str | None = None,
    protocol: str | None = None,
) -> None:
    """Update fields of an existing route."""
    manager = await create_manager()

    try:
        route = await manager.update_route(
            tunnel_ref, route_id, hostname=hostname, service=service, protocol=protocol
        )
        console.print(
            f"[green]✓[/green] Route updated: [magenta]{route.hostname}[/magenta] "
            f"→ {route.service}"
        )
    except TunnelError as e:
        console.print(f"[red]Error updating route: {e}")
    finally:
        await manager.close()


async def remove_route_async(tunnel_ref: str, route_id: str) -> None:
    manager = await create_manager()

    try:
        await manager.delete_route(tunnel_ref, route_id)
        console.print(f"[green]✓[/green] Route removed: {route_id}")
    except TunnelError as e:
        console.print(f"[red]Error removing route: {e}")
    finally:
        await manager.close()
