import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from tunnelkeeper.core.constants import START_TIMEOUT_SECONDS
from tunnelkeeper.core.settings import Settings


@pytest.fixture
def clean_env(monkeypatch):
    """Drop any TUNNELKEEPER_* variables from the host environment."""
    for key in list(os.environ):
        if key.startswith("TUNNELKEEPER_"):
            monkeypatch.delenv(key)
    return monkeypatch


@pytest.mark.unit
class TestSettings:
    def test_defaults(self, clean_env):
        settings = Settings()

        assert settings.daemon_binary == "cloudflared"
        assert settings.stop_grace == 1.5
        assert settings.kill_timeout == 5.0
        assert settings.restart_delay == 2.0
        assert settings.start_timeout == START_TIMEOUT_SECONDS
        assert settings.log_capacity == 1000
        assert settings.store_path == settings.data_dir / "store.json"

    def test_environment_overrides(self, clean_env):
        clean_env.setenv("TUNNELKEEPER_DATA_DIR", "/srv/tunnelkeeper")
        clean_env.setenv("TUNNELKEEPER_DAEMON_BINARY", "/usr/local/bin/cloudflared")
        clean_env.setenv("TUNNELKEEPER_STOP_GRACE", "0.5")
        clean_env.setenv("TUNNELKEEPER_REGISTRY_URL", "https://api.example.test/v4/")
        clean_env.setenv("UNRELATED", "ignored")

        settings = Settings()

        assert settings.data_dir == Path("/srv/tunnelkeeper")
        assert settings.daemon_binary == "/usr/local/bin/cloudflared"
        assert settings.stop_grace == 0.5
        assert settings.registry_url == "https://api.example.test/v4"

    def test_explicit_values_win_over_environment(self, clean_env):
        clean_env.setenv("TUNNELKEEPER_KILL_TIMEOUT", "9")

        assert Settings(kill_timeout=0.2).kill_timeout == 0.2

    @pytest.mark.parametrize("raw", ["off", "none", "0", ""])
    def test_start_timeout_can_be_disabled(self, clean_env, raw):
        clean_env.setenv("TUNNELKEEPER_START_TIMEOUT", raw)

        assert Settings().start_timeout is None

    def test_invalid_values_rejected(self, clean_env):
        with pytest.raises(ValidationError):
            Settings(kill_timeout=0)
        with pytest.raises(ValidationError):
            Settings(unknown_option=True)

    def test_invalid_environment_value_rejected(self, clean_env):
        clean_env.setenv("TUNNELKEEPER_LOG_CAPACITY", "lots")

        with pytest.raises(ValidationError):
            Settings()
