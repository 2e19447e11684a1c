"""
Client for the remote tunnel registry (Cloudflare v4 API).
"""

from __future__ import annotations

import base64
import json
import secrets
from typing import TYPE_CHECKING, Any

from aiohttp import ClientError, ClientSession, ClientTimeout

from ..core.constants import (
    CATCH_ALL_SERVICE,
    CREDENTIALS_KEY,
    DEFAULT_REGISTRY_URL,
    REQUEST_TIMEOUT_SECONDS,
    TUNNEL_SECRET_BYTES,
)
from ..core.exceptions import (
    AccountResolutionError,
    CredentialsMissingError,
    RegistryAPIError,
    RegistryError,
    RegistryTransportError,
)
from ..core.models import Credentials, RemoteTunnel
from ..utils.logging import get_logger

if TYPE_CHECKING:
    from ..storage.base import StorageBackend

logger = get_logger("tunnelkeeper.network.registry")

ACCOUNT_RESOLUTION_HINT = (
    "Could not determine the registry account id. Set an explicit account id "
    "in the registry settings, or make sure the API token has the "
    '"Account Settings: Read" permission.'
)


def generate_tunnel_secret() -> str:
    """32 random bytes, base64 encoded."""
    return base64.b64encode(secrets.token_bytes(TUNNEL_SECRET_BYTES)).decode("ascii")


class RegistryClient:
    """
    Authenticated client for the tunnel registry.\n
    Holds the active credentials process-wide (last write wins) and
    nothing else; every call picks the auth scheme from whichever
    credential fields are populated.
    Attributes:
        base_url (str): API base URL.
        storage (StorageBackend | None): Where credentials are persisted.
        timeout (float): Total timeout for one request.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_REGISTRY_URL,
        credentials: Credentials | None = None,
        storage: StorageBackend | None = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        session: ClientSession | None = None,
    ) -> None:
        """Initialize registry client."""
        self.base_url = base_url.rstrip("/")
        self.storage = storage
        self.timeout = timeout
        self._credentials = credentials
        self._session = session
        self._owns_session = session is None

    @property
    def credentials(self) -> Credentials | None:
        return self._credentials

    @property
    def has_credentials(self) -> bool:
        return (
            self._credentials is not None
            and self._credentials.auth_headers() is not None
        )

    def set_credentials(self, credentials: Credentials | None) -> None:
        """Replace the active credentials without persisting them."""
        self._credentials = credentials

    async def save_credentials(self, credentials: Credentials) -> None:
        """Make credentials active and persist them."""
        self._credentials = credentials
        if self.storage is not None:
            await self.storage.set(
                CREDENTIALS_KEY, credentials.model_dump(exclude_none=True)
            )
        logger.info("Registry credentials saved")

    async def load_credentials(self) -> Credentials | None:
        """Load persisted credentials and make them active."""
        if self.storage is None:
            return self._credentials

        data = await self.storage.get(CREDENTIALS_KEY)
        if data:
            self._credentials = Credentials.model_validate(data)
        return self._credentials

    async def verify_credentials(
        self, credentials: Credentials | None = None
    ) -> dict[str, Any]:
        """
        Check that credentials are accepted by the registry.

        Args:
            credentials: Credentials to test; defaults to the active ones.

        Returns:
            A dict with the token details (token auth only) and the user account.
        """
        credentials = credentials or self._credentials
        token_info = None

        if credentials is not None and credentials.api_token:
            token_info = await self._request(
                "GET", "/user/tokens/verify", credentials=credentials
            )

        account = await self._request("GET", "/user", credentials=credentials)
        logger.info("Registry credentials verified")
        return {"token": token_info, "account": account}

    async def get_account_info(self) -> dict[str, Any]:
        return await self._request("GET", "/user")

    async def list_accounts(self) -> list[dict[str, Any]]:
        return await self._request("GET", "/accounts") or []

    async def resolve_account_id(self) -> str:
        """
        Account id for account-scoped calls.

        Uses the explicitly configured id when present, otherwise the
        first account visible to the credentials.
        """
        credentials = self._require_credentials()
        if credentials.account_id:
            return credentials.account_id

        try:
            accounts = await self.list_accounts()
        except CredentialsMissingError:
            raise
        except RegistryError as e:
            logger.error(f"Failed to list registry accounts: {e}")
            raise AccountResolutionError(ACCOUNT_RESOLUTION_HINT) from e

        account_id = accounts[0].get("id") if accounts else None
        if not account_id:
            raise AccountResolutionError(ACCOUNT_RESOLUTION_HINT)

        logger.info(f"Resolved registry account id: {account_id}")
        return account_id

    async def list_zones(self) -> list[dict[str, Any]]:
        return await self._request("GET", "/zones") or []

    async def list_tunnels(self) -> list[dict[str, Any]]:
        account_id = await self.resolve_account_id()
        result = await self._request(
            "GET",
            f"/accounts/{account_id}/cfd_tunnel",
            params={"is_deleted": "false"},
        )
        return result or []

    async def create_tunnel(self, name: str, secret: str | None = None) -> RemoteTunnel:
        """
        Create a locally-configured tunnel in the registry.

        Args:
            name: Tunnel name.
            secret: Base64 tunnel secret, generated when omitted.

        Returns:
            The created tunnel with its id, token and credentials blob.
        """
        account_id = await self.resolve_account_id()
        secret = secret or generate_tunnel_secret()

        result = await self._request(
            "POST",
            f"/accounts/{account_id}/cfd_tunnel",
            json_body={"name": name, "tunnel_secret": secret, "config_src": "local"},
        )

        remote = RemoteTunnel(
            id=result["id"],
            name=result.get("name", name),
            token=result.get("token"),
            account_id=result.get("account_tag") or account_id,
            secret=secret,
            credentials_file=result.get("credentials_file"),
        )
        logger.info(f"Registry tunnel {name} created with id {remote.id}")
        return remote

    async def delete_tunnel(self, tunnel_id: str, cascade: bool = True) -> None:
        account_id = await self.resolve_account_id()
        params = {"cascade": "true"} if cascade else None
        await self._request(
            "DELETE", f"/accounts/{account_id}/cfd_tunnel/{tunnel_id}", params=params
        )
        logger.info(f"Registry tunnel {tunnel_id} deleted")

    async def clear_tunnel_config(self, tunnel_id: str) -> None:
        """Replace the remote ingress with a single catch-all rule."""
        await self.set_tunnel_config(
            tunnel_id, {"ingress": [{"service": CATCH_ALL_SERVICE}]}
        )
        logger.info(f"Registry config cleared for tunnel {tunnel_id}")

    async def get_tunnel_config(self, tunnel_id: str) -> dict[str, Any]:
        account_id = await self.resolve_account_id()
        return await self._request(
            "GET", f"/accounts/{account_id}/cfd_tunnel/{tunnel_id}/configurations"
        )

    async def set_tunnel_config(
        self, tunnel_id: str, config: dict[str, Any]
    ) -> dict[str, Any]:
        account_id = await self.resolve_account_id()
        result = await self._request(
            "PUT",
            f"/accounts/{account_id}/cfd_tunnel/{tunnel_id}/configurations",
            json_body={"config": config},
        )
        logger.info(f"Registry config updated for tunnel {tunnel_id}")
        return result

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> RegistryClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _require_credentials(
        self, credentials: Credentials | None = None
    ) -> Credentials:
        credentials = credentials or self._credentials
        if credentials is None or credentials.auth_headers() is None:
            raise CredentialsMissingError(
                "Registry credentials are not set: provide an API token or an "
                "email and global API key"
            )
        return credentials

    def _get_session(self) -> ClientSession:
        if self._session is None or self._session.closed:
            self._session = ClientSession(
                timeout=ClientTimeout(total=self.timeout),
                headers={"Content-Type": "application/json"},
            )
            self._owns_session = True
        return self._session

    async def _request(
        self,
        method: str,
        path: str,
        *,
        credentials: Credentials | None = None,
        params: dict[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        """Perform one API call and unwrap the response envelope."""
        headers = self._require_credentials(credentials).auth_headers()
        url = f"{self.base_url}{path}"
        session = self._get_session()

        logger.debug(f"{method} {url}")

        try:
            async with session.request(
                method, url, headers=headers, params=params, json=json_body
            ) as response:
                status = response.status
                body = await response.text()
        except (ClientError, TimeoutError) as e:
            raise RegistryTransportError(
                f"Could not reach the registry API: {str(e) or type(e).__name__}"
            ) from e

        try:
            payload = json.loads(body) if body else {}
        except ValueError:
            payload = None

        if status >= 400 or not isinstance(payload, dict) or not payload.get("success"):
            message = _first_error_message(payload) or f"{method} {path} failed"
            logger.error(f"Registry API error ({status}): {message}")
            raise RegistryAPIError(message, status_code=status, raw_body=body)

        return payload.get("result")


def _first_error_message(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    errors = payload.get("errors") or []
    if errors and isinstance(errors[0], dict):
        return errors[0].get("message")
    return None
