"""Runtime settings for the supervisor."""

from __future__ import annotations

from pathlib import Path

from pydantic import (
    Field,
    PositiveFloat,
    PositiveInt,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    DEFAULT_CONFIG_DIR,
    DEFAULT_DAEMON_BINARY,
    DEFAULT_DATA_DIR,
    DEFAULT_REGISTRY_URL,
    ENV_PREFIX,
    KILL_TIMEOUT_SECONDS,
    LOG_BUFFER_CAPACITY,
    REMOTE_CLEANUP_DELAY_SECONDS,
    REQUEST_TIMEOUT_SECONDS,
    RESTART_DELAY_SECONDS,
    SIMULATED_START_DELAY_SECONDS,
    START_TIMEOUT_SECONDS,
    STOP_GRACE_SECONDS,
    STORE_FILENAME,
)


class Settings(BaseSettings):
    """
    Settings for the tunnel supervisor.\n
    Every field can be set from a TUNNELKEEPER_<FIELD> environment variable.
    Attributes:
        data_dir (Path): Where the persistent store lives.
        config_dir (Path): Where daemon config and credentials files are written.
        daemon_binary (str): Name or path of the cloudflared executable.
        registry_url (str): Base URL of the registry API.
        request_timeout (PositiveFloat): Total timeout for one registry request.
        stop_grace (float): Seconds before a stopping tunnel is marked stopped.
        kill_timeout (PositiveFloat): Seconds between SIGTERM and SIGKILL.
        restart_delay (float): Pause between stop and start on restart.
        simulated_start_delay (float): Promotion delay for simulated tunnels.
        start_timeout (float | None): Bound on starting -> running, None to wait forever.
        remote_cleanup_delay (float): Pause between clearing and deleting a remote tunnel.
        log_capacity (PositiveInt): Size of the in-memory log ring buffer.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        validate_assignment=True,
        extra="forbid",
    )

    data_dir: Path = Field(default=DEFAULT_DATA_DIR)
    config_dir: Path = Field(default=DEFAULT_CONFIG_DIR)
    daemon_binary: str = Field(default=DEFAULT_DAEMON_BINARY)
    registry_url: str = Field(default=DEFAULT_REGISTRY_URL)
    request_timeout: PositiveFloat = Field(default=REQUEST_TIMEOUT_SECONDS)
    stop_grace: float = Field(default=STOP_GRACE_SECONDS, ge=0)
    kill_timeout: PositiveFloat = Field(default=KILL_TIMEOUT_SECONDS)
    restart_delay: float = Field(default=RESTART_DELAY_SECONDS, ge=0)
    simulated_start_delay: float = Field(default=SIMULATED_START_DELAY_SECONDS, ge=0)
    start_timeout: PositiveFloat | None = Field(default=START_TIMEOUT_SECONDS)
    remote_cleanup_delay: float = Field(default=REMOTE_CLEANUP_DELAY_SECONDS, ge=0)
    log_capacity: PositiveInt = Field(default=LOG_BUFFER_CAPACITY)

    @field_validator("start_timeout", mode="before")
    @classmethod
    def _disable_start_timeout(cls, value: object) -> object:
        if isinstance(value, str) and value.strip().lower() in {"", "0", "none", "off"}:
            return None
        if value == 0:
            return None
        return value

    @field_validator("registry_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def store_path(self) -> Path:
        return self.data_dir / STORE_FILENAME
