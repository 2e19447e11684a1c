"""
Rendering of cloudflared config and credentials files.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiofiles
import yaml

from ..core.constants import CATCH_ALL_SERVICE
from ..core.exceptions import NotRegistryBackedError, TunnelConfigError
from ..utils.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable

    from ..core.models import RemoteTunnel, Route, Tunnel

logger = get_logger("tunnelkeeper.network.ingress")


def catch_all_rule() -> dict[str, str]:
    return {"service": CATCH_ALL_SERVICE}


def build_ingress_rules(routes: Iterable[Route]) -> list[dict[str, Any]]:
    """
    Build the ordered ingress list for a set of routes.

    Routes without a hostname are skipped with a warning. The list always
    ends with the http_status:404 catch-all rule.

    Args:
        routes: Routes in evaluation order.

    Returns:
        The ingress rules as plain dictionaries.
    """
    ingress: list[dict[str, Any]] = []

    for route in routes:
        if not route.hostname or not route.hostname.strip():
            logger.warning(
                f"Skipping route {route.id} -> {route.service}: hostname is empty"
            )
            continue

        rule: dict[str, Any] = {"hostname": route.hostname, "service": route.service}
        if route.origin_request:
            rule["originRequest"] = dict(route.origin_request)
        ingress.append(rule)

    ingress.append(catch_all_rule())
    return ingress


def render_config(tunnel: Tunnel) -> dict[str, Any]:
    """Build the config document for a registry-backed tunnel."""
    if not tunnel.is_registry_backed:
        raise NotRegistryBackedError(
            f"Tunnel '{tunnel.name}' is not linked to a registry tunnel"
        )

    return {
        "tunnel": tunnel.registry_id,
        "credentials-file": str(tunnel.credentials_path)
        if tunnel.credentials_path
        else None,
        "ingress": build_ingress_rules(tunnel.routes),
    }


def dump_config(config: dict[str, Any]) -> str:
    return yaml.safe_dump(
        config, default_flow_style=False, sort_keys=False, width=float("inf")
    )


async def write_config_file(tunnel: Tunnel) -> Path:
    """
    Render and write a tunnel's daemon config file.

    Args:
        tunnel: A registry-backed tunnel.

    Returns:
        The path the config was written to.

    Raises:
        NotRegistryBackedError: If the tunnel has no registry id.
        TunnelConfigError: If the file cannot be written.
    """
    content = dump_config(render_config(tunnel))
    path = Path(tunnel.config_path)

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(content)
    except OSError as e:
        raise TunnelConfigError(f"Failed to write config file {path}: {e}") from e

    logger.info(f"Config file generated: {path}")
    return path


async def read_config_file(path: Path) -> str:
    try:
        async with aiofiles.open(path, encoding="utf-8") as f:
            return await f.read()
    except OSError as e:
        raise TunnelConfigError(f"Failed to read config file {path}: {e}") from e


def build_credentials(
    remote: RemoteTunnel, fallback_account_id: str | None = None
) -> dict[str, Any]:
    """Credentials document for the daemon, preferring the registry's own blob."""
    if remote.credentials_file:
        return dict(remote.credentials_file)

    return {
        "AccountTag": remote.account_id or fallback_account_id,
        "TunnelSecret": remote.secret,
        "TunnelID": remote.id,
    }


async def write_credentials_file(
    path: Path, remote: RemoteTunnel, fallback_account_id: str | None = None
) -> Path:
    """Write the credentials JSON the daemon needs to authenticate."""
    credentials = build_credentials(remote, fallback_account_id)

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(credentials, indent=2))
    except OSError as e:
        raise TunnelConfigError(f"Failed to write credentials file {path}: {e}") from e

    logger.info(f"Credentials file saved: {path}")
    return path
