"""
Data models for tunnel supervision.
"""

from __future__ import annotations

import re
import secrets
import time
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import TunnelValidationError

_TUNNEL_NAME_RE = re.compile(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?$")


class TunnelStatus(StrEnum):
    """
    Enumeration of possible tunnel states.
    Attributes:
        STOPPED: No daemon is running for the tunnel.
        STARTING: Daemon launched, waiting for a registered connection.
        RUNNING: Daemon reported a registered connection.
        STOPPING: Shutdown requested, grace window pending.
        ERROR: Launch failed or the daemon never connected.
    """

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


STOPPABLE_STATUSES = frozenset(
    {TunnelStatus.STARTING, TunnelStatus.RUNNING, TunnelStatus.ERROR}
)
STARTABLE_STATUSES = frozenset({TunnelStatus.STOPPED, TunnelStatus.ERROR})


class RouteProtocol(StrEnum):
    """
    Enumeration of supported route protocols.
    Attributes:
        HTTP: Plain HTTP origin.
        HTTPS: TLS origin.
        TCP: Raw TCP origin.
        SSH: SSH origin.
    """

    HTTP = "http"
    HTTPS = "https"
    TCP = "tcp"
    SSH = "ssh"


class LogLevel(StrEnum):
    """Levels exposed to the control surface."""

    INFO = "info"
    WARN = "warn"
    ERROR = "error"


def generate_tunnel_id() -> str:
    """Timestamp-derived tunnel id with a short random suffix."""
    return f"tunnel-{int(time.time() * 1000)}-{secrets.token_hex(2)}"


def generate_route_id() -> str:
    return f"route-{secrets.token_hex(6)}"


def normalize_tunnel_name(name: str) -> str:
    """
    Normalize a user supplied tunnel name.

    Trims, lowercases and turns whitespace runs into hyphens.

    Raises:
        TunnelValidationError: If the result is not a lowercase
            alphanumeric/hyphen name.
    """
    normalized = re.sub(r"\s+", "-", (name or "").strip().lower())
    if not _TUNNEL_NAME_RE.match(normalized):
        raise TunnelValidationError(
            f"Invalid tunnel name '{name}': use lowercase letters, digits and hyphens"
        )
    return normalized


class Route(BaseModel):
    """
    One hostname to local service mapping of a tunnel.
    Attributes:
        id (str): Unique identifier for the route.
        hostname (str): Public hostname matched by the ingress rule.
        service (str): Local service address, e.g. http://localhost:3000.
        protocol (RouteProtocol): Origin protocol (default: HTTP).
        origin_request (dict): Optional originRequest overrides.
    """

    model_config = ConfigDict(validate_assignment=True, extra="ignore")

    id: str = Field(default_factory=generate_route_id, description="Route id")
    hostname: str = Field(..., description="Public hostname")
    service: str = Field(..., description="Target service address")
    protocol: RouteProtocol = Field(
        default=RouteProtocol.HTTP, description="Origin protocol"
    )
    origin_request: dict[str, Any] = Field(
        default_factory=dict, description="originRequest overrides"
    )


class Tunnel(BaseModel):
    """
    A managed tunnel record.
    Attributes:
        id (str): Unique identifier for the tunnel.
        name (str): Lowercase name, also used for the config file name.
        description (str): Free text description.
        status (TunnelStatus): Current lifecycle status.
        created_at (datetime): Creation timestamp.
        registry_id (str | None): Id assigned by the remote registry.
        token (str | None): Connector token returned by the registry.
        account_id (str | None): Registry account owning the tunnel.
        url (str | None): Public CNAME target of the tunnel.
        routes (list[Route]): Ordered ingress routes, first match wins.
        config_path (Path): Generated daemon config file.
        credentials_path (Path | None): Credentials file for the daemon.
        error_message (str | None): Last start error.
    """

    model_config = ConfigDict(validate_assignment=True, extra="ignore")

    id: str = Field(default_factory=generate_tunnel_id, description="Tunnel id")
    name: str = Field(..., description="Tunnel name")
    description: str = Field(default="", description="Description")
    status: TunnelStatus = Field(
        default=TunnelStatus.STOPPED, description="Current tunnel status"
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC), description="Creation timestamp"
    )
    registry_id: str | None = Field(None, description="Registry tunnel id")
    token: str | None = Field(None, description="Registry connector token")
    account_id: str | None = Field(None, description="Registry account id")
    url: str | None = Field(None, description="Public CNAME target")
    routes: list[Route] = Field(default_factory=list, description="Ingress routes")
    config_path: Path = Field(..., description="Daemon config file path")
    credentials_path: Path | None = Field(None, description="Credentials file path")
    error_message: str | None = Field(None, description="Last error message")

    @property
    def is_running(self) -> bool:
        """True exactly when status is RUNNING."""
        return self.status == TunnelStatus.RUNNING

    @property
    def is_registry_backed(self) -> bool:
        return self.registry_id is not None

    def find_route(self, route_id: str) -> Route | None:
        for route in self.routes:
            if route.id == route_id:
                return route
        return None

    def snapshot(self) -> dict[str, Any]:
        """Full record as sent to listeners, including runtime flags."""
        data = self.model_dump(mode="json")
        data["is_running"] = self.is_running
        return data

    def __str__(self) -> str:
        return f"Tunnel({self.name})"


class Credentials(BaseModel):
    """
    Registry authentication material.
    Attributes:
        api_token (str | None): Scoped API token (bearer auth).
        email (str | None): Account email for global key auth.
        global_key (str | None): Global API key.
        account_id (str | None): Explicit account id.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    api_token: str | None = Field(None, description="API token")
    email: str | None = Field(None, description="Account email")
    global_key: str | None = Field(None, description="Global API key")
    account_id: str | None = Field(None, description="Explicit account id")

    def auth_headers(self) -> dict[str, str] | None:
        """Headers for whichever scheme is populated, token first."""
        if self.api_token:
            return {"Authorization": f"Bearer {self.api_token}"}
        if self.email and self.global_key:
            return {"X-Auth-Email": self.email, "X-Auth-Key": self.global_key}
        return None


class RemoteTunnel(BaseModel):
    """
    Tunnel object as created by the registry.
    Attributes:
        id (str): Registry tunnel id.
        name (str): Registry tunnel name.
        token (str | None): Connector token.
        account_id (str | None): Owning account.
        secret (str | None): Base64 tunnel secret used at creation.
        credentials_file (dict | None): Credentials blob returned by the API.
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    token: str | None = None
    account_id: str | None = None
    secret: str | None = None
    credentials_file: dict[str, Any] | None = None


class LogEntry(BaseModel):
    """
    One captured log line.
    Attributes:
        timestamp (datetime): When the record was emitted.
        level (LogLevel): info, warn or error.
        message (str): Rendered message.
    """

    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    level: LogLevel = Field(default=LogLevel.INFO)
    message: str


class TunnelStats(BaseModel):
    """Counts of tunnels by status."""

    total: int = 0
    running: int = 0
    stopped: int = 0
    error: int = 0


class RunningTunnel(BaseModel):
    """A tunnel confirmed running by both its status and a live handle."""

    id: str
    name: str
    pid: int | None = None
    status: TunnelStatus


class ServiceStatus(BaseModel):
    """
    Cross-checked view of which tunnels are really running.
    Attributes:
        running (bool): Whether any tunnel is really running.
        tunnel_count (int): Number of really running tunnels.
        running_tunnels (list[RunningTunnel]): Details of those tunnels.
        total_tunnels (int): Size of the collection.
    """

    running: bool = False
    tunnel_count: int = 0
    running_tunnels: list[RunningTunnel] = Field(default_factory=list)
    total_tunnels: int = 0


class DaemonInfo(BaseModel):
    """Whether the daemon binary is usable, with its version and resolved path."""

    installed: bool = False
    version: str | None = None
    path: str | None = None
