"""tunnelkeeper CLI"""

import asyncio
import logging
from collections.abc import Coroutine
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.text import Text

from .. import get_ascii_banner
from ..core.exceptions import TunnelError
from ..utils.logging import setup_logging
from .commands import config, registry, routes, start, status, tunnels

app = typer.Typer(
    name="tunnelkeeper",
    help="Lifecycle supervisor for cloudflared tunnels",
    add_completion=True,
    rich_markup_mode="rich",
)
route_app = typer.Typer(help="Manage the routes of a tunnel")
config_app = typer.Typer(help="Generate and inspect daemon config files")
registry_app = typer.Typer(help="Talk to the tunnel registry")

app.add_typer(route_app, name="route")
app.add_typer(config_app, name="config")
app.add_typer(registry_app, name="registry")

console = Console()


def _run(coro: Coroutine[Any, Any, None]) -> None:
    try:
        asyncio.run(coro)
    except KeyboardInterrupt:
        pass
    except TunnelError as e:
        console.print(f"[red]Error: {e}")
        raise typer.Exit(1) from e


@app.command("create")
def create_tunnel(
    name: str = typer.Argument(..., help="Tunnel name"),
    description: str = typer.Option("", "--description", "-d", help="Description"),
    use_registry: bool = typer.Option(
        False, "--registry/--simulated", help="Create the tunnel in the registry"
    ),
    route: list[str] = typer.Option(
        [], "--route", "-r", help="Route as HOSTNAME=SERVICE (repeatable)"
    ),
) -> None:
    """Create a new tunnel."""
    _run(
        tunnels.create_tunnel_async(
            name=name,
            description=description,
            use_registry=use_registry,
            routes=route,
        )
    )


@app.command("list")
def list_tunnels() -> None:
    """List all tunnels."""
    _run(tunnels.list_tunnels_async())


@app.command("delete")
def delete_tunnel(
    tunnel_ref: str = typer.Argument(..., help="Tunnel ID or name"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
) -> None:
    """Delete a tunnel and its registry object."""
    _run(tunnels.delete_tunnel_async(tunnel_ref, force))


@app.command("start")
def start_tunnels(
    tunnel_refs: list[str] = typer.Argument(..., help="Tunnel IDs or names"),
    wait: float | None = typer.Option(
        None, "--wait", "-w", help="Seconds to wait for each tunnel to connect"
    ),
) -> None:
    """Start tunnels and supervise them until Ctrl+C."""
    _run(start.start_tunnels_async(tunnel_refs, wait))


@app.command("stats")
def show_stats() -> None:
    """Show tunnel counts by status."""
    _run(tunnels.show_stats_async())


@app.command("status")
def status_tunnel(
    tunnel_ref: str | None = typer.Argument(None, help="Tunnel ID or name (optional)"),
) -> None:
    """Show tunnel status."""
    _run(status.status_tunnel_async(tunnel_ref))


@app.command("check")
def check_daemon() -> None:
    """Check that the cloudflared binary is installed."""
    _run(status.check_daemon_async())


@route_app.command("add")
def add_route(
    tunnel_ref: str = typer.Argument(..., help="Tunnel ID or name"),
    hostname: str = typer.Argument(..., help="Public hostname"),
    service: str = typer.Argument(..., help="Local service, e.g. http://localhost:3000"),
    protocol: str = typer.Option(
        "http", "--protocol", "-p", help="Protocol (http/https/tcp/ssh)"
    ),
) -> None:
    """Add a route to a tunnel."""
    _run(routes.add_route_async(tunnel_ref, hostname, service, protocol))


@route_app.command("update")
def update_route(
    tunnel_ref: str = typer.Argument(..., help="Tunnel ID or name"),
    route_id: str = typer.Argument(..., help="Route ID"),
    hostname: str | None = typer.Option(None, "--hostname", help="New hostname"),
    service: str | None = typer.Option(None, "--service", help="New service"),
    protocol: str | None = typer.Option(None, "--protocol", "-p", help="New protocol"),
) -> None:
    """Update a route."""
    _run(routes.update_route_async(tunnel_ref, route_id, hostname, service, protocol))


@route_app.command("remove")
def remove_route(
    tunnel_ref: str = typer.Argument(..., help="Tunnel ID or name"),
    route_id: str = typer.Argument(..., help="Route ID"),
) -> None:
    """Remove a route."""
    _run(routes.remove_route_async(tunnel_ref, route_id))


@config_app.command("generate")
def generate_config(
    tunnel_ref: str = typer.Argument(..., help="Tunnel ID or name"),
) -> None:
    """Write the daemon config file of a tunnel."""
    _run(config.generate_config_async(tunnel_ref))


@config_app.command("show")
def show_config(
    tunnel_ref: str = typer.Argument(..., help="Tunnel ID or name"),
) -> None:
    """Print the daemon config file of a tunnel."""
    _run(config.show_config_async(tunnel_ref))


@registry_app.command("login")
def registry_login(
    api_token: str | None = typer.Option(None, "--api-token", help="API token"),
    email: str | None = typer.Option(None, "--email", help="Account email"),
    global_key: str | None = typer.Option(
        None, "--global-key", help="Global API key"
    ),
    account_id: str | None = typer.Option(
        None, "--account-id", help="Explicit account id"
    ),
) -> None:
    """Verify and save registry credentials."""
    _run(registry.login_async(api_token, email, global_key, account_id))


@registry_app.command("test")
def registry_test() -> None:
    """Test the saved registry credentials."""
    _run(registry.test_connection_async())


@registry_app.command("account")
def registry_account() -> None:
    """Show the registry account."""
    _run(registry.show_account_async())


@registry_app.command("zones")
def registry_zones() -> None:
    """List the zones of the account."""
    _run(registry.list_zones_async())


@registry_app.command("tunnels")
def registry_tunnels() -> None:
    """List the tunnels known to the registry."""
    _run(registry.list_remote_tunnels_async())


@registry_app.command("get-config")
def registry_get_config(
    registry_id: str = typer.Argument(..., help="Registry tunnel ID"),
) -> None:
    """Show the remote config of a registry tunnel."""
    _run(registry.get_remote_config_async(registry_id))


@registry_app.command("set-config")
def registry_set_config(
    registry_id: str = typer.Argument(..., help="Registry tunnel ID"),
    path: Path = typer.Argument(..., help="YAML or JSON config file", exists=True),
) -> None:
    """Upload a config document as the remote config of a registry tunnel."""
    _run(registry.set_remote_config_async(registry_id, path))


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False, "--version", "-v", help="Show version and exit"
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable verbose logging"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
) -> None:
    """Lifecycle supervisor for cloudflared tunnels."""

    if debug:
        setup_logging(logging.DEBUG)
    elif verbose:
        setup_logging(logging.INFO)
    else:
        setup_logging(logging.CRITICAL + 1)

    if version:
        for line in get_ascii_banner().split("\n"):
            if "VERSION" in line:
                console.print(Text(line, style="bold green"))
            elif "Keeps your" in line:
                console.print(Text(line, style="italic white"))
            else:
                console.print(Text(line, style="bold cyan"))

        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(Text(get_ascii_banner(), style="bold cyan"))
        console.print("\n[bold]Available commands:[/bold]")
        console.print("  [cyan]create[/cyan]        Create a new tunnel")
        console.print("  [cyan]list[/cyan]          List all tunnels")
        console.print("  [cyan]start[/cyan]         Start and supervise tunnels")
        console.print("  [cyan]status[/cyan]        Show tunnel status")
        console.print("  [cyan]stats[/cyan]         Show tunnel counts")
        console.print("  [cyan]delete[/cyan]        Delete a tunnel")
        console.print("  [cyan]route[/cyan]         Manage routes")
        console.print("  [cyan]config[/cyan]        Generate or show daemon configs")
        console.print("  [cyan]registry[/cyan]      Registry account commands")
        console.print(
            "\n[dim]Use 'tunnelkeeper --help' for detailed help or "
            "'tunnelkeeper <command> --help' for command-specific help.[/dim]"
        )


if __name__ == "__main__":
    app()
