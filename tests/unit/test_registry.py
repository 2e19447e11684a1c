import base64
import json

import aiohttp
import pytest

from tunnelkeeper.core.constants import CREDENTIALS_KEY
from tunnelkeeper.core.exceptions import (
    AccountResolutionError,
    CredentialsMissingError,
    RegistryAPIError,
    RegistryTransportError,
)
from tunnelkeeper.core.models import Credentials
from tunnelkeeper.network.registry import RegistryClient, generate_tunnel_secret

BASE_URL = "https://api.example.test/client/v4"


@pytest.fixture
def token_credentials() -> Credentials:
    return Credentials(api_token="token-1", account_id="acc-1")


@pytest.fixture
def client(api_session, token_credentials) -> RegistryClient:
    return RegistryClient(
        base_url=BASE_URL, credentials=token_credentials, session=api_session
    )


def _call(session, index: int = 0):
    call = session.request.call_args_list[index]
    return call.args[0], call.args[1], call.kwargs


@pytest.mark.unit
class TestAuthentication:
    @pytest.mark.asyncio
    async def test_missing_credentials(self, api_session):
        client = RegistryClient(base_url=BASE_URL, session=api_session)

        assert not client.has_credentials
        with pytest.raises(CredentialsMissingError):
            await client.list_zones()

        api_session.request.assert_not_called()

    @pytest.mark.asyncio
    async def test_verify_token_credentials(self, client, api_session, ok):
        api_session.respond(
            ok({"id": "tok", "status": "active"}), ok({"email": "me@example.com"})
        )

        result = await client.verify_credentials()

        assert result == {
            "token": {"id": "tok", "status": "active"},
            "account": {"email": "me@example.com"},
        }
        method, url, kwargs = _call(api_session, 0)
        assert (method, url) == ("GET", f"{BASE_URL}/user/tokens/verify")
        assert kwargs["headers"] == {"Authorization": "Bearer token-1"}
        assert _call(api_session, 1)[1] == f"{BASE_URL}/user"

    @pytest.mark.asyncio
    async def test_verify_global_key_credentials(self, api_session, ok):
        client = RegistryClient(base_url=BASE_URL, session=api_session)
        credentials = Credentials(email="me@example.com", global_key="key-1")
        api_session.respond(ok({"email": "me@example.com"}))

        result = await client.verify_credentials(credentials)

        assert result["token"] is None
        method, url, kwargs = _call(api_session)
        assert (method, url) == ("GET", f"{BASE_URL}/user")
        assert kwargs["headers"] == {
            "X-Auth-Email": "me@example.com",
            "X-Auth-Key": "key-1",
        }

    @pytest.mark.asyncio
    async def test_token_wins_over_global_key(self):
        credentials = Credentials(
            api_token="token-1", email="me@example.com", global_key="key-1"
        )

        assert credentials.auth_headers() == {"Authorization": "Bearer token-1"}

    @pytest.mark.asyncio
    async def test_credentials_are_persisted(self, file_storage, token_credentials):
        client = RegistryClient(base_url=BASE_URL, storage=file_storage)

        await client.save_credentials(token_credentials)

        assert await file_storage.get(CREDENTIALS_KEY) == {
            "api_token": "token-1",
            "account_id": "acc-1",
        }

        fresh = RegistryClient(base_url=BASE_URL, storage=file_storage)
        assert await fresh.load_credentials() == token_credentials
        assert fresh.has_credentials


@pytest.mark.unit
class TestAccountResolution:
    @pytest.mark.asyncio
    async def test_explicit_account_id(self, client, api_session):
        assert await client.resolve_account_id() == "acc-1"

        api_session.request.assert_not_called()

    @pytest.mark.asyncio
    async def test_first_listed_account(self, api_session, ok):
        client = RegistryClient(
            base_url=BASE_URL,
            credentials=Credentials(api_token="token-1"),
            session=api_session,
        )
        api_session.respond(ok([{"id": "acc-a"}, {"id": "acc-b"}]))

        assert await client.resolve_account_id() == "acc-a"
        assert _call(api_session)[1] == f"{BASE_URL}/accounts"

    @pytest.mark.asyncio
    async def test_no_accounts(self, api_session, ok):
        client = RegistryClient(
            base_url=BASE_URL,
            credentials=Credentials(api_token="token-1"),
            session=api_session,
        )
        api_session.respond(ok([]))

        with pytest.raises(AccountResolutionError, match="Account Settings: Read"):
            await client.resolve_account_id()

    @pytest.mark.asyncio
    async def test_account_without_id(self, api_session, ok):
        client = RegistryClient(
            base_url=BASE_URL,
            credentials=Credentials(api_token="token-1"),
            session=api_session,
        )
        api_session.respond(ok([{"name": "Personal"}]))

        with pytest.raises(AccountResolutionError, match="Account Settings: Read"):
            await client.resolve_account_id()

    @pytest.mark.asyncio
    async def test_account_listing_forbidden(self, api_session):
        client = RegistryClient(
            base_url=BASE_URL,
            credentials=Credentials(api_token="token-1"),
            session=api_session,
        )
        api_session.respond(
            (
                403,
                {
                    "success": False,
                    "errors": [{"code": 9109, "message": "Unauthorized"}],
                    "result": None,
                },
            )
        )

        with pytest.raises(AccountResolutionError) as exc_info:
            await client.resolve_account_id()

        assert isinstance(exc_info.value.__cause__, RegistryAPIError)


@pytest.mark.unit
class TestTunnels:
    @pytest.mark.asyncio
    async def test_create_tunnel(self, client, api_session, ok):
        api_session.respond(
            ok(
                {
                    "id": "reg-123",
                    "name": "web",
                    "account_tag": "acc-1",
                    "token": "connector-token",
                    "credentials_file": {
                        "AccountTag": "acc-1",
                        "TunnelID": "reg-123",
                        "TunnelSecret": "from-api",
                    },
                }
            )
        )

        remote = await client.create_tunnel("web")

        method, url, kwargs = _call(api_session)
        assert (method, url) == ("POST", f"{BASE_URL}/accounts/acc-1/cfd_tunnel")
        body = kwargs["json"]
        assert body["name"] == "web"
        assert body["config_src"] == "local"
        assert len(base64.b64decode(body["tunnel_secret"])) == 32

        assert remote.id == "reg-123"
        assert remote.token == "connector-token"
        assert remote.account_id == "acc-1"
        assert remote.secret == body["tunnel_secret"]
        assert remote.credentials_file["TunnelSecret"] == "from-api"

    @pytest.mark.asyncio
    async def test_list_tunnels_excludes_deleted(self, client, api_session, ok):
        api_session.respond(ok([{"id": "reg-1", "name": "web"}]))

        tunnels = await client.list_tunnels()

        assert tunnels == [{"id": "reg-1", "name": "web"}]
        assert _call(api_session)[2]["params"] == {"is_deleted": "false"}

    @pytest.mark.asyncio
    async def test_delete_tunnel_cascades(self, client, api_session, ok):
        api_session.respond(ok(None))

        await client.delete_tunnel("reg-123")

        method, url, kwargs = _call(api_session)
        assert (method, url) == ("DELETE", f"{BASE_URL}/accounts/acc-1/cfd_tunnel/reg-123")
        assert kwargs["params"] == {"cascade": "true"}

    @pytest.mark.asyncio
    async def test_clear_tunnel_config(self, client, api_session, ok):
        api_session.respond(ok({"config": {}}))

        await client.clear_tunnel_config("reg-123")

        method, url, kwargs = _call(api_session)
        assert method == "PUT"
        assert url == f"{BASE_URL}/accounts/acc-1/cfd_tunnel/reg-123/configurations"
        assert kwargs["json"] == {
            "config": {"ingress": [{"service": "http_status:404"}]}
        }

    @pytest.mark.asyncio
    async def test_get_tunnel_config(self, client, api_session, ok):
        config = {"config": {"ingress": [{"service": "http_status:404"}]}}
        api_session.respond(ok(config))

        assert await client.get_tunnel_config("reg-123") == config
        assert _call(api_session)[0] == "GET"


@pytest.mark.unit
class TestErrors:
    @pytest.mark.asyncio
    async def test_http_error_carries_status_and_body(self, client, api_session):
        body = {
            "success": False,
            "errors": [{"code": 1003, "message": "Invalid or missing zone id."}],
            "result": None,
        }
        api_session.respond((400, body))

        with pytest.raises(RegistryAPIError) as exc_info:
            await client.list_zones()

        error = exc_info.value
        assert error.status_code == 400
        assert error.message == "Invalid or missing zone id."
        assert json.loads(error.raw_body) == body
        assert str(error) == "Invalid or missing zone id. (HTTP 400)"

    @pytest.mark.asyncio
    async def test_unsuccessful_envelope(self, client, api_session):
        api_session.respond((200, {"success": False, "errors": [], "result": None}))

        with pytest.raises(RegistryAPIError, match="GET /zones failed"):
            await client.list_zones()

    @pytest.mark.asyncio
    async def test_non_json_body(self, client, api_session):
        api_session.respond((502, "<html>Bad gateway</html>"))

        with pytest.raises(RegistryAPIError) as exc_info:
            await client.list_zones()

        assert exc_info.value.status_code == 502
        assert exc_info.value.raw_body == "<html>Bad gateway</html>"

    @pytest.mark.asyncio
    async def test_transport_error(self, client, api_session):
        api_session.request.side_effect = aiohttp.ClientConnectionError("refused")

        with pytest.raises(RegistryTransportError, match="refused"):
            await client.list_zones()

    @pytest.mark.asyncio
    async def test_timeout(self, client, api_session):
        api_session.request.side_effect = TimeoutError()

        with pytest.raises(RegistryTransportError, match="TimeoutError"):
            await client.list_zones()


@pytest.mark.unit
class TestSession:
    @pytest.mark.asyncio
    async def test_injected_session_is_not_closed(self, client, api_session):
        await client.close()

        api_session.close.assert_not_called()

    def test_generate_tunnel_secret(self):
        first = generate_tunnel_secret()

        assert len(base64.b64decode(first)) == 32
        assert first != generate_tunnel_secret()
