import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio

from tunnelkeeper.core.models import Credentials, RemoteTunnel, Tunnel
from tunnelkeeper.core.settings import Settings
from tunnelkeeper.network.manager import TunnelManager
from tunnelkeeper.network.registry import RegistryClient
from tunnelkeeper.storage.file_storage import FileStorage


class FakeProcess:
    """In-memory stand-in for an asyncio subprocess running cloudflared."""

    def __init__(self, pid: int = 4242, exit_on_terminate: bool = True) -> None:
        self.pid = pid
        self.returncode = None
        self.stdout = asyncio.StreamReader()
        self.signals: list[str] = []
        self.command: list[str] = []
        self.exit_on_terminate = exit_on_terminate
        self._exited = asyncio.Event()

    def emit(self, line: str) -> None:
        self.stdout.feed_data(f"{line}\n".encode())

    def finish(self, code: int = 0) -> None:
        if self.returncode is None:
            self.returncode = code
            self.stdout.feed_eof()
            self._exited.set()

    def terminate(self) -> None:
        self.signals.append("SIGTERM")
        if self.exit_on_terminate:
            self.finish(-15)

    def kill(self) -> None:
        self.signals.append("SIGKILL")
        self.finish(-9)

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


@pytest.fixture
def temp_dir(tmp_path):
    """Create a temporary directory for storage tests."""
    return tmp_path


@pytest.fixture
def file_storage(temp_dir) -> FileStorage:
    return FileStorage(base_dir=temp_dir / "data")


@pytest.fixture
def fast_settings(temp_dir) -> Settings:
    """Settings with every lifecycle timer shrunk for tests."""
    return Settings(
        data_dir=temp_dir / "data",
        config_dir=temp_dir / "cloudflared",
        stop_grace=0.01,
        kill_timeout=0.2,
        restart_delay=0.01,
        simulated_start_delay=0.05,
        start_timeout=5.0,
        remote_cleanup_delay=0,
        log_capacity=200,
    )


@pytest.fixture
def fake_daemon():
    """Replace subprocess creation with FakeProcess instances."""
    processes: list[FakeProcess] = []
    options = SimpleNamespace(exit_on_terminate=True, on_spawn=None)

    async def _spawn(*command, **kwargs):
        process = FakeProcess(
            pid=1000 + len(processes), exit_on_terminate=options.exit_on_terminate
        )
        process.command = list(command)
        processes.append(process)
        if options.on_spawn is not None:
            options.on_spawn(process)
        return process

    with patch(
        "tunnelkeeper.network.daemon.asyncio.create_subprocess_exec",
        side_effect=_spawn,
    ) as mock_exec:
        yield SimpleNamespace(processes=processes, exec=mock_exec, options=options)


@pytest.fixture
def eventually():
    """Poll a predicate until it holds or the timeout expires."""

    async def _eventually(predicate, timeout: float = 1.0) -> None:
        async with asyncio.timeout(timeout):
            while not predicate():
                await asyncio.sleep(0.005)

    return _eventually


@pytest.fixture
def sample_tunnel(temp_dir) -> Tunnel:
    return Tunnel(name="demo", config_path=temp_dir / "cloudflared" / "demo.yml")


@pytest.fixture
def registry_tunnel(temp_dir) -> Tunnel:
    config_dir = temp_dir / "cloudflared"
    return Tunnel(
        name="web",
        registry_id="reg-123",
        account_id="acc-1",
        url="reg-123.cfargotunnel.com",
        config_path=config_dir / "web.yml",
        credentials_path=config_dir / "reg-123.json",
    )


@pytest.fixture
def mock_registry():
    registry = MagicMock(spec=RegistryClient)
    registry.credentials = Credentials(api_token="token-1", account_id="acc-1")
    registry.has_credentials = True
    registry.create_tunnel = AsyncMock(
        return_value=RemoteTunnel(
            id="reg-123",
            name="web",
            token="connector-token",
            account_id="acc-1",
            secret="c2VjcmV0",
        )
    )
    registry.clear_tunnel_config = AsyncMock()
    registry.delete_tunnel = AsyncMock()
    registry.close = AsyncMock()
    return registry


@pytest_asyncio.fixture
async def manager(fast_settings, mock_registry):
    manager = TunnelManager(
        storage=FileStorage(fast_settings.data_dir),
        registry=mock_registry,
        settings=fast_settings,
    )
    await manager.load_tunnels()
    yield manager
    await manager.close()


def _reply(status: int, body) -> MagicMock:
    response = MagicMock()
    response.status = status
    response.text = AsyncMock(
        return_value=body if isinstance(body, str) else json.dumps(body)
    )
    context = MagicMock()
    context.__aenter__.return_value = response
    return context


@pytest.fixture
def api_session():
    """Mocked aiohttp session answering requests from a queue of replies."""
    session = MagicMock()
    session.closed = False

    def respond(*replies) -> None:
        session.request.side_effect = [_reply(status, body) for status, body in replies]

    session.respond = respond
    return session


@pytest.fixture
def ok():
    """Build a successful API envelope."""

    def _ok(result) -> tuple[int, dict]:
        return 200, {"success": True, "errors": [], "messages": [], "result": result}

    return _ok
