from __future__ import annotations

from rich.console import Console
from rich.syntax import Syntax

from ...bootstrap import create_manager
from ...core.exceptions import TunnelError

console = Console()


async def generate_config_async(tunnel_ref: str) -> None:
    """Write a tunnel's daemon config file."""
    manager = await create_manager()

    try:
        path = await manager.generate_config_file(tunnel_ref)
        console.print(f"[green]✓[/green] Config file generated: [cyan]{path}")
    except TunnelError as e:
        console.print(f"[red]Error generating config: {e}")
    finally:
        await manager.close()


async def show_config_async(tunnel_ref: str) -> None:
    """Print a tunnel's daemon config file."""
    manager = await create_manager()

    try:
        content = await manager.get_config_file_content(tunnel_ref)
        console.print(Syntax(content, "yaml", theme="ansi_dark"))
    except TunnelError as e:
        console.print(f"[red]Error reading config: {e}")
    finally:
        await manager.close()
