import json

import pytest
import yaml

from tunnelkeeper.core.exceptions import NotRegistryBackedError, TunnelConfigError
from tunnelkeeper.core.models import RemoteTunnel, Route
from tunnelkeeper.network.ingress import (
    build_credentials,
    build_ingress_rules,
    read_config_file,
    render_config,
    write_config_file,
    write_credentials_file,
)
from tunnelkeeper.utils.logging import LogBuffer


@pytest.fixture
def log_buffer():
    buffer = LogBuffer(capacity=50)
    buffer.install()
    yield buffer
    buffer.uninstall()


@pytest.mark.unit
class TestIngressRules:
    def test_empty_hostname_is_skipped_with_warning(self, log_buffer):
        routes = [
            Route(id="route-a", hostname="a.example.com", service="http://localhost:3000"),
            Route(id="route-b", hostname="", service="http://localhost:4000"),
        ]

        rules = build_ingress_rules(routes)

        assert rules == [
            {"hostname": "a.example.com", "service": "http://localhost:3000"},
            {"service": "http_status:404"},
        ]
        warnings = log_buffer.entries("warn")
        assert [w.message for w in warnings] == [
            "Skipping route route-b -> http://localhost:4000: hostname is empty"
        ]

    def test_no_routes_gives_catch_all_only(self):
        assert build_ingress_rules([]) == [{"service": "http_status:404"}]

    def test_origin_request_only_when_set(self):
        routes = [
            Route(
                hostname="a.example.com",
                service="https://localhost:8443",
                origin_request={"noTLSVerify": True},
            ),
            Route(hostname="b.example.com", service="ssh://localhost:22"),
        ]

        rules = build_ingress_rules(routes)

        assert rules[0]["originRequest"] == {"noTLSVerify": True}
        assert "originRequest" not in rules[1]

    def test_order_is_preserved(self):
        routes = [
            Route(hostname=f"h{i}.example.com", service=f"http://localhost:{3000 + i}")
            for i in range(5)
        ]

        hostnames = [rule.get("hostname") for rule in build_ingress_rules(routes)]

        assert hostnames == [f"h{i}.example.com" for i in range(5)] + [None]


@pytest.mark.unit
class TestConfigFiles:
    def test_simulated_tunnel_has_no_config(self, sample_tunnel):
        with pytest.raises(NotRegistryBackedError):
            render_config(sample_tunnel)

    @pytest.mark.asyncio
    async def test_write_and_read_config(self, registry_tunnel):
        registry_tunnel.routes = [
            Route(hostname="app.example.com", service="http://localhost:3000")
        ]

        path = await write_config_file(registry_tunnel)
        content = await read_config_file(path)

        assert path == registry_tunnel.config_path
        assert list(yaml.safe_load(content)) == ["tunnel", "credentials-file", "ingress"]
        assert content.startswith("tunnel: reg-123\n")
        assert "- hostname: app.example.com\n" in content

    @pytest.mark.asyncio
    async def test_read_missing_config(self, temp_dir):
        with pytest.raises(TunnelConfigError):
            await read_config_file(temp_dir / "missing.yml")


@pytest.mark.unit
class TestCredentialsFile:
    def test_registry_blob_is_preferred(self):
        remote = RemoteTunnel(
            id="reg-1",
            secret="local-secret",
            credentials_file={
                "AccountTag": "acc-api",
                "TunnelSecret": "api-secret",
                "TunnelID": "reg-1",
            },
        )

        assert build_credentials(remote, "acc-fallback")["TunnelSecret"] == "api-secret"

    def test_falls_back_to_configured_account(self):
        remote = RemoteTunnel(id="reg-1", secret="local-secret")

        assert build_credentials(remote, "acc-fallback") == {
            "AccountTag": "acc-fallback",
            "TunnelSecret": "local-secret",
            "TunnelID": "reg-1",
        }

    @pytest.mark.asyncio
    async def test_write_credentials_file(self, temp_dir):
        remote = RemoteTunnel(id="reg-1", account_id="acc-1", secret="s3cr3t")
        path = temp_dir / "cloudflared" / "reg-1.json"

        await write_credentials_file(path, remote)

        assert json.loads(path.read_text()) == {
            "AccountTag": "acc-1",
            "TunnelSecret": "s3cr3t",
            "TunnelID": "reg-1",
        }
