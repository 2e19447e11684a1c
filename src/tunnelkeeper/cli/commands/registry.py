"""
Registry account commands.
"""

from __future__ import annotations

import json
from pathlib import Path

import aiofiles
import yaml
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from ...bootstrap import create_registry
from ...core.exceptions import TunnelError
from ...core.models import Credentials

console = Console()


async def login_async(
    api_token: str | None = None,
    email: str | None = None,
    global_key: str | None = None,
    account_id: str | None = None,
) -> None:
    """Verify and persist registry credentials."""
    registry = await create_registry()

    try:
        credentials = Credentials(
            api_token=api_token,
            email=email,
            global_key=global_key,
            account_id=account_id,
        )
        if credentials.auth_headers() is None:
            console.print(
                "[red]Error: provide --api-token, or both --email and --global-key"
            )
            return

        with console.status("[bold green]Verifying credentials..."):
            result = await registry.verify_credentials(credentials)

        await registry.save_credentials(credentials)

        account = result.get("account") or {}
        console.print("[green]✓[/green] Credentials verified and saved")
        if account.get("email"):
            console.print(f"[bold]Account:[/bold] [cyan]{account['email']}")

    except TunnelError as e:
        console.print(f"[red]Login failed: {e}")
    finally:
        await registry.close()


async def test_connection_async() -> None:
    """Check that the saved credentials still work."""
    registry = await create_registry()

    try:
        with console.status("[bold green]Contacting registry..."):
            result = await registry.verify_credentials()

        token = result.get("token") or {}
        console.print("[green]✓[/green] Connection successful")
        if token.get("status"):
            console.print(f"[bold]Token status:[/bold] [cyan]{token['status']}")

    except TunnelError as e:
        console.print(f"[red]Connection failed: {e}")
    finally:
        await registry.close()


async def show_account_async() -> None:
    registry = await create_registry()

    try:
        info = await registry.get_account_info()
        account_id = await registry.resolve_account_id()

        table = Table(show_header=False, box=None, padding=(0, 1))
        table.add_column("Property", style="bold")
        table.add_column("Value", style="cyan")
        table.add_row("User ID", str(info.get("id", "-")))
        table.add_row("Email", str(info.get("email", "-")))
        table.add_row("Account ID", account_id)

        console.print(table)

    except TunnelError as e:
        console.print(f"[red]Error: {e}")
    finally:
        await registry.close()


async def list_zones_async() -> None:
    registry = await create_registry()

    try:
        zones = await registry.list_zones()

        if not zones:
            console.print("[yellow]No zones found[/yellow]")
            return

        table = Table(title="Zones")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Name", style="magenta")
        table.add_column("Status", style="green")

        for zone in zones:
            table.add_row(zone.get("id", ""), zone.get("name", ""), zone.get("status", ""))

        console.print(table)

    except TunnelError as e:
        console.print(f"[red]Error listing zones: {e}")
    finally:
        await registry.close()


async def list_remote_tunnels_async() -> None:
    registry = await create_registry()

    try:
        tunnels = await registry.list_tunnels()

        if not tunnels:
            console.print("[yellow]No registry tunnels found[/yellow]")
            return

        table = Table(title="Registry Tunnels")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Name", style="magenta")
        table.add_column("Status", style="green")
        table.add_column("Created", style="white")

        for tunnel in tunnels:
            table.add_row(
                tunnel.get("id", ""),
                tunnel.get("name", ""),
                tunnel.get("status", "-"),
                tunnel.get("created_at", "-"),
            )

        console.print(table)

    except TunnelError as e:
        console.print(f"[red]Error listing registry tunnels: {e}")
    finally:
        await registry.close()


async def get_remote_config_async(registry_id: str) -> None:
    registry = await create_registry()

    try:
        result = await registry.get_tunnel_config(registry_id)
        config = (result or {}).get("config") or {}
        console.print(Syntax(yaml.safe_dump(config, sort_keys=False), "yaml"))

    except TunnelError as e:
        console.print(f"[red]Error fetching remote config: {e}")
    finally:
        await registry.close()


async def set_remote_config_async(registry_id: str, path: Path) -> None:
    """Upload a YAML or JSON config document as the tunnel's remote config."""
    registry = await create_registry()

    try:
        async with aiofiles.open(path, encoding="utf-8") as f:
            content = await f.read()

        if path.suffix == ".json":
            config = json.loads(content)
        else:
            config = yaml.safe_load(content)

        if not isinstance(config, dict):
            console.print(f"[red]Error: {path} does not contain a mapping")
            return

        await registry.set_tunnel_config(registry_id, config)
        console.print(f"[green]✓[/green] Remote config updated for {registry_id}")

    except OSError as e:
        console.print(f"[red]Error reading {path}: {e}")
    except (ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Error parsing {path}: {e}")
    except TunnelError as e:
        console.print(f"[red]Error updating remote config: {e}")
    finally:
        await registry.close()
