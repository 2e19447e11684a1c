"""Wiring of the supervisor's components."""

from __future__ import annotations

from .core.events import EventBus
from .core.settings import Settings
from .network.manager import TunnelManager
from .network.registry import RegistryClient
from .network.supervisor import ProcessSupervisor
from .storage.file_storage import FileStorage


async def create_registry(
    settings: Settings | None = None, storage: FileStorage | None = None
) -> RegistryClient:
    """Build a registry client with its persisted credentials loaded."""
    settings = settings or Settings()
    storage = storage or FileStorage(settings.data_dir)

    registry = RegistryClient(
        base_url=settings.registry_url,
        storage=storage,
        timeout=settings.request_timeout,
    )
    await registry.load_credentials()
    return registry


async def create_manager(
    settings: Settings | None = None, events: EventBus | None = None
) -> TunnelManager:
    """
    Build a ready-to-use tunnel manager.

    Loads persisted registry credentials and the tunnel collection.

    Args:
        settings: Settings to use; read from the environment when omitted.
        events: Event bus shared with the caller, if any.

    Returns:
        The loaded manager. Call close() when done with it.
    """
    settings = settings or Settings()
    storage = FileStorage(settings.data_dir)

    manager = TunnelManager(
        storage=storage,
        registry=await create_registry(settings, storage),
        supervisor=ProcessSupervisor(settings),
        settings=settings,
        events=events,
    )
    await manager.load_tunnels()
    return manager
