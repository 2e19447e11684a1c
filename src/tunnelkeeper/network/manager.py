"""Tunnel manager for handling multiple tunnels"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiofiles

from ..core.constants import CNAME_SUFFIX, TUNNELS_KEY
from ..core.events import EventBus, EventType
from ..core.exceptions import (
    RegistryError,
    RouteNotFoundError,
    StorageError,
    TunnelError,
    TunnelNotFoundError,
    TunnelValidationError,
)
from ..core.models import (
    STOPPABLE_STATUSES,
    DaemonInfo,
    LogEntry,
    LogLevel,
    Route,
    RouteProtocol,
    RunningTunnel,
    ServiceStatus,
    Tunnel,
    TunnelStats,
    TunnelStatus,
    normalize_tunnel_name,
)
from ..core.settings import Settings
from ..utils.logging import LogBuffer, get_logger
from .daemon import check_daemon
from .ingress import read_config_file, write_config_file, write_credentials_file
from .supervisor import ProcessSupervisor

logger = get_logger("tunnelkeeper.network.manager")

if TYPE_CHECKING:
    from ..storage.base import StorageBackend
    from .registry import RegistryClient


class TunnelManager:
    """
    Manager for handling multiple tunnels.\n
    Owns the tunnel collection and coordinates the registry client, the
    config generator and the process supervisor. Lifecycle operations on
    one tunnel are serialized by a per-tunnel lock. Every change is
    persisted and announced on the event bus.
    Attributes:\n
        storage (StorageBackend): Key-value store holding the collection.
        registry (RegistryClient): Remote registry client.
        supervisor (ProcessSupervisor): Daemon lifecycle state machine.
        settings (Settings): Paths and timings.
        events (EventBus): Notification bus for the control surface.
    """

    def __init__(
        self,
        storage: StorageBackend,
        registry: RegistryClient,
        supervisor: ProcessSupervisor | None = None,
        settings: Settings | None = None,
        events: EventBus | None = None,
    ) -> None:
        """Initialize tunnel manager."""
        self.storage = storage
        self.registry = registry
        self.settings = settings or Settings()
        self.events = events or EventBus()
        self.supervisor = supervisor or ProcessSupervisor(self.settings)
        self.supervisor.on_change = self._commit
        self.supervisor.prepare_config = write_config_file
        self.supervisor.on_output = self._on_daemon_output

        self._tunnels: dict[str, Tunnel] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._pending_names: set[str] = set()

        self.log_buffer = LogBuffer(
            capacity=self.settings.log_capacity,
            on_entry=lambda entry: self.events.emit(EventType.NEW_LOG, entry),
        )
        self.log_buffer.install()

    async def load_tunnels(self) -> None:
        """Load the collection from the store, marking every tunnel stopped."""
        data = await self.storage.get(TUNNELS_KEY)

        if data is None:
            logger.info("No tunnels stored yet, initializing empty collection")
            self._tunnels = {}
            await self.save_tunnels()
            return

        tunnels: dict[str, Tunnel] = {}
        for item in data:
            try:
                tunnel = Tunnel.model_validate(item)
            except ValueError as e:
                logger.warning(f"Skipping unreadable tunnel record: {e}")
                continue
            tunnel.status = TunnelStatus.STOPPED
            tunnels[tunnel.id] = tunnel

        self._tunnels = tunnels
        logger.info(f"Loaded {len(tunnels)} tunnels")

    async def save_tunnels(self) -> None:
        await self.storage.set(
            TUNNELS_KEY,
            [tunnel.model_dump(mode="json") for tunnel in self._tunnels.values()],
        )

    def list_tunnels(self) -> list[Tunnel]:
        return list(self._tunnels.values())

    def get_tunnel(self, tunnel_ref: str) -> Tunnel:
        """Public method to get tunnel by id, name or unique prefix."""
        return self._get_tunnel_by_partial_id(tunnel_ref)

    async def create_tunnel(
        self,
        name: str,
        description: str = "",
        use_registry: bool = False,
        routes: list[Route | dict[str, Any]] | None = None,
        secret: str | None = None,
    ) -> Tunnel:
        """
        Create a new tunnel.

        With use_registry the remote tunnel is created first and its
        credentials file written; a registry failure leaves nothing behind
        locally.

        Raises:
            TunnelValidationError: If the name or a route is invalid, or the
                name is taken.
            RegistryError: If the remote tunnel cannot be created.
        """
        name = normalize_tunnel_name(name)
        if name in self._pending_names or any(
            t.name == name for t in self._tunnels.values()
        ):
            raise TunnelValidationError(f"Tunnel '{name}' already exists")

        built_routes = [self._build_route(route) for route in routes or []]

        # Held until the record is in the collection.
        self._pending_names.add(name)
        try:
            tunnel = await self._create_record(
                name, description, built_routes, use_registry, secret
            )
        finally:
            self._pending_names.discard(name)

        logger.info(f"Created tunnel {tunnel.name} ({tunnel.id})")
        return tunnel

    async def _create_record(
        self,
        name: str,
        description: str,
        built_routes: list[Route],
        use_registry: bool,
        secret: str | None,
    ) -> Tunnel:
        config_dir = Path(self.settings.config_dir)

        tunnel = Tunnel(
            name=name,
            description=description,
            routes=built_routes,
            config_path=config_dir / f"{name}.yml",
        )

        if use_registry:
            remote = await self.registry.create_tunnel(name, secret=secret)
            fallback_account = (
                self.registry.credentials.account_id
                if self.registry.credentials
                else None
            )
            credentials_path = await write_credentials_file(
                config_dir / f"{remote.id}.json", remote, fallback_account
            )

            tunnel.registry_id = remote.id
            tunnel.token = remote.token
            tunnel.account_id = remote.account_id or fallback_account
            tunnel.url = f"{remote.id}.{CNAME_SUFFIX}"
            tunnel.credentials_path = credentials_path

        self._tunnels[tunnel.id] = tunnel
        await self._commit(tunnel)

        if tunnel.is_registry_backed:
            await write_config_file(tunnel)

        return tunnel

    async def start_tunnel(self, tunnel_ref: str) -> Tunnel:
        """Start a tunnel by id, name or prefix."""
        tunnel = self._get_tunnel_by_partial_id(tunnel_ref)
        async with self._exclusive(tunnel):
            await self.supervisor.start(tunnel)
        return tunnel

    async def stop_tunnel(self, tunnel_ref: str) -> Tunnel:
        """Stop a tunnel by id, name or prefix."""
        tunnel = self._get_tunnel_by_partial_id(tunnel_ref)
        async with self._exclusive(tunnel):
            await self.supervisor.stop(tunnel)
        return tunnel

    async def restart_tunnel(self, tunnel_ref: str) -> Tunnel:
        tunnel = self._get_tunnel_by_partial_id(tunnel_ref)
        async with self._exclusive(tunnel):
            await self.supervisor.restart(tunnel)
        return tunnel

    async def wait_until_running(
        self, tunnel_ref: str, timeout: float | None = None
    ) -> Tunnel:
        """Wait for a starting tunnel to connect."""
        tunnel = self._get_tunnel_by_partial_id(tunnel_ref)
        await self.supervisor.wait_until_running(tunnel, timeout=timeout)
        return tunnel

    async def delete_tunnel(self, tunnel_ref: str) -> None:
        """
        Delete a tunnel by id, name or prefix.

        Active tunnels are stopped first. Remote cleanup is best effort:
        registry failures are logged and the local record is removed anyway.
        """
        tunnel = self._get_tunnel_by_partial_id(tunnel_ref)

        async with self._exclusive(tunnel):
            if tunnel.status in STOPPABLE_STATUSES:
                await self.supervisor.stop(tunnel)

            if tunnel.is_registry_backed and self.registry.has_credentials:
                await self._cleanup_remote(tunnel)

            await self.supervisor.forget(tunnel.id)
            del self._tunnels[tunnel.id]
            await self.save_tunnels()

            config_path = Path(tunnel.config_path)
            if config_path.exists():
                try:
                    config_path.unlink()
                except OSError as e:
                    logger.warning(f"Could not remove config file {config_path}: {e}")

        self.events.emit(
            EventType.SERVICE_STATUS_CHANGED,
            self.get_service_status().model_dump(mode="json"),
        )
        logger.info(f"Deleted tunnel {tunnel.name} ({tunnel.id})")

    async def add_route(
        self,
        tunnel_ref: str,
        hostname: str,
        service: str,
        protocol: RouteProtocol | str = RouteProtocol.HTTP,
        origin_request: dict[str, Any] | None = None,
    ) -> Route:
        """
        Append a route to a tunnel.

        Raises:
            TunnelValidationError: If hostname or service is blank.
        """
        tunnel = self._get_tunnel_by_partial_id(tunnel_ref)
        route = self._build_route(
            {
                "hostname": hostname,
                "service": service,
                "protocol": protocol,
                "origin_request": origin_request or {},
            }
        )

        async with self._exclusive(tunnel):
            tunnel.routes = [*tunnel.routes, route]
            await self._routes_changed(tunnel)

        logger.info(f"Added route {route.hostname} -> {route.service} to {tunnel.name}")
        return route

    async def update_route(
        self,
        tunnel_ref: str,
        route_id: str,
        hostname: str | None = None,
        service: str | None = None,
        protocol: RouteProtocol | str | None = None,
        origin_request: dict[str, Any] | None = None,
    ) -> Route:
        """Update a route, keeping existing values for anything not given."""
        tunnel = self._get_tunnel_by_partial_id(tunnel_ref)

        async with self._exclusive(tunnel):
            current = tunnel.find_route(route_id)
            if current is None:
                raise RouteNotFoundError(
                    f"Route {route_id} not found on tunnel {tunnel.name}"
                )

            updated = self._build_route(
                {
                    "id": current.id,
                    "hostname": current.hostname if hostname is None else hostname,
                    "service": current.service if service is None else service,
                    "protocol": current.protocol if protocol is None else protocol,
                    "origin_request": current.origin_request
                    if origin_request is None
                    else origin_request,
                }
            )

            tunnel.routes = [
                updated if route.id == route_id else route for route in tunnel.routes
            ]
            await self._routes_changed(tunnel)

        logger.info(f"Updated route {route_id} on {tunnel.name}")
        return updated

    async def delete_route(self, tunnel_ref: str, route_id: str) -> None:
        tunnel = self._get_tunnel_by_partial_id(tunnel_ref)

        async with self._exclusive(tunnel):
            if tunnel.find_route(route_id) is None:
                raise RouteNotFoundError(
                    f"Route {route_id} not found on tunnel {tunnel.name}"
                )

            tunnel.routes = [route for route in tunnel.routes if route.id != route_id]
            await self._routes_changed(tunnel)

        logger.info(f"Removed route {route_id} from {tunnel.name}")

    async def generate_config_file(self, tunnel_ref: str) -> Path:
        """Write the daemon config for a registry-backed tunnel."""
        tunnel = self._get_tunnel_by_partial_id(tunnel_ref)
        return await write_config_file(tunnel)

    async def get_config_file_content(self, tunnel_ref: str) -> str:
        tunnel = self._get_tunnel_by_partial_id(tunnel_ref)
        return await read_config_file(Path(tunnel.config_path))

    async def get_daemon_info(self) -> DaemonInfo:
        """Whether the configured daemon binary is installed and its version."""
        return await check_daemon(self.settings.daemon_binary)

    def get_tunnel_stats(self) -> TunnelStats:
        """Count tunnels by status."""
        tunnels = list(self._tunnels.values())
        return TunnelStats(
            total=len(tunnels),
            running=sum(1 for t in tunnels if t.status == TunnelStatus.RUNNING),
            stopped=sum(1 for t in tunnels if t.status == TunnelStatus.STOPPED),
            error=sum(1 for t in tunnels if t.status == TunnelStatus.ERROR),
        )

    def get_service_status(self) -> ServiceStatus:
        """Tunnels whose status and live handle both say running."""
        running = []
        for tunnel in self._tunnels.values():
            if not tunnel.is_running or not self.supervisor.has_live_handle(tunnel.id):
                continue
            handle = self.supervisor.get_handle(tunnel.id)
            running.append(
                RunningTunnel(
                    id=tunnel.id,
                    name=tunnel.name,
                    pid=handle.pid if handle is not None else None,
                    status=tunnel.status,
                )
            )

        return ServiceStatus(
            running=bool(running),
            tunnel_count=len(running),
            running_tunnels=running,
            total_tunnels=len(self._tunnels),
        )

    def get_logs(self, level: LogLevel | str | None = None) -> list[LogEntry]:
        return self.log_buffer.entries(level)

    def clear_logs(self) -> None:
        self.log_buffer.clear()

    async def export_logs(self, path: Path) -> int:
        """
        Write the captured logs to a text file.

        Returns:
            The number of entries written.
        """
        entries = self.log_buffer.entries()
        lines = [
            f"[{entry.timestamp.isoformat()}] {entry.level.value.upper()}: "
            f"{entry.message}\n"
            for entry in entries
        ]

        try:
            async with aiofiles.open(path, "w", encoding="utf-8") as f:
                await f.write("".join(lines))
        except OSError as e:
            raise StorageError(f"Failed to export logs to {path}: {e}") from e

        return len(entries)

    async def stop_all_tunnels(self) -> None:
        """Stop all active tunnels."""
        tasks = []
        for tunnel in self._tunnels.values():
            if tunnel.status in STOPPABLE_STATUSES:
                tasks.append(self.stop_tunnel(tunnel.id))

        if len(tasks) > 0:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        """Stop everything and release the registry session and log buffer."""
        try:
            await self.stop_all_tunnels()
            await self.supervisor.shutdown()
            await self.events.drain()
        finally:
            await self.registry.close()
            self.log_buffer.uninstall()

    async def _cleanup_remote(self, tunnel: Tunnel) -> None:
        try:
            await self.registry.clear_tunnel_config(tunnel.registry_id)
        except RegistryError as e:
            logger.warning(f"Could not clear remote config of {tunnel.name}: {e}")

        await asyncio.sleep(self.settings.remote_cleanup_delay)

        try:
            await self.registry.delete_tunnel(tunnel.registry_id)
        except RegistryError as e:
            logger.error(f"Could not delete remote tunnel {tunnel.registry_id}: {e}")

    async def _routes_changed(self, tunnel: Tunnel) -> None:
        await self._commit(tunnel)
        if tunnel.is_registry_backed:
            await write_config_file(tunnel)

    async def _commit(self, tunnel: Tunnel) -> None:
        """Persist the collection and announce the tunnel's new state."""
        await self.save_tunnels()
        self.events.emit(EventType.TUNNEL_UPDATED, tunnel.snapshot())
        self.events.emit(
            EventType.SERVICE_STATUS_CHANGED,
            self.get_service_status().model_dump(mode="json"),
        )

    def _on_daemon_output(self, tunnel: Tunnel, level: LogLevel, line: str) -> None:
        self.events.emit(
            EventType.DAEMON_LOG,
            {"tunnel_id": tunnel.id, "level": level.value, "line": line},
        )

    def _build_route(self, route: Route | dict[str, Any]) -> Route:
        data = route.model_dump() if isinstance(route, Route) else dict(route)

        hostname = (data.get("hostname") or "").strip()
        service = (data.get("service") or "").strip()
        if not hostname:
            raise TunnelValidationError("Route hostname is required")
        if not service:
            raise TunnelValidationError("Route service is required")

        data["hostname"] = hostname
        data["service"] = service
        try:
            return Route.model_validate(data)
        except ValueError as e:
            raise TunnelValidationError(f"Invalid route: {e}") from e

    @asynccontextmanager
    async def _exclusive(self, tunnel: Tunnel) -> AsyncIterator[Tunnel]:
        """
        Hold the tunnel's lock, failing if it was deleted while waiting.

        The lock is dropped once a deleted tunnel has no callers left on it.
        """
        lock = self._locks.setdefault(tunnel.id, asyncio.Lock())
        self._lock_users[tunnel.id] = self._lock_users.get(tunnel.id, 0) + 1
        try:
            async with lock:
                if tunnel.id not in self._tunnels:
                    raise TunnelNotFoundError(f"Tunnel {tunnel.id} not found")
                yield tunnel
        finally:
            self._lock_users[tunnel.id] -= 1
            if not self._lock_users[tunnel.id]:
                del self._lock_users[tunnel.id]
                if tunnel.id not in self._tunnels:
                    self._locks.pop(tunnel.id, None)

    def _get_tunnel_by_partial_id(self, tunnel_ref: str) -> Tunnel:
        """Get tunnel by ID, name or unique prefix of either."""
        if tunnel_ref in self._tunnels:
            return self._tunnels[tunnel_ref]

        for tunnel in self._tunnels.values():
            if tunnel.name == tunnel_ref:
                return tunnel

        needle = tunnel_ref.lower()
        matching_tunnels = [
            tunnel
            for full_id, tunnel in self._tunnels.items()
            if needle and (full_id.startswith(needle) or tunnel.name.startswith(needle))
        ]

        if not matching_tunnels:
            raise TunnelNotFoundError(f"No tunnel found matching '{tunnel_ref}'")

        if len(matching_tunnels) > 1:
            matches = [f"{t.name} ({t.id})" for t in matching_tunnels]
            raise TunnelError(
                f"Multiple tunnels match '{tunnel_ref}': {', '.join(matches)}. "
                "Please be more specific."
            )

        return matching_tunnels[0]
