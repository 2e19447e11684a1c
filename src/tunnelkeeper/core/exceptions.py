"""Custom exceptions for the tunnel supervisor."""

from __future__ import annotations


class TunnelError(Exception):
    """Base exception for tunnel-related errors."""

    pass


class TunnelNotFoundError(TunnelError):
    """Raised when a tunnel is not found."""

    pass


class RouteNotFoundError(TunnelNotFoundError):
    """Raised when a route is not found on a tunnel."""

    pass


class TunnelValidationError(TunnelError):
    """Raised when user input for a tunnel or route is invalid."""

    pass


class TunnelStateError(TunnelError):
    """Raised when an operation is not valid in the tunnel's current state."""

    pass


class TunnelStartupError(TunnelError):
    """Raised when a tunnel fails to start."""

    pass


class ProcessSpawnError(TunnelStartupError):
    """Raised when the tunnel daemon process cannot be launched."""

    pass


class StartTimeoutError(TunnelStartupError):
    """Raised when a daemon never reports a registered connection."""

    pass


class TunnelConfigError(TunnelError):
    """Raised when tunnel configuration is invalid."""

    pass


class NotRegistryBackedError(TunnelConfigError):
    """Raised when a registry-only operation targets a simulated tunnel."""

    pass


class StorageError(TunnelError):
    """Raised when storage operations fail."""

    pass


class RegistryError(TunnelError):
    """Base exception for remote registry failures."""

    pass


class CredentialsMissingError(RegistryError):
    """Raised when no registry credentials are configured."""

    pass


class AccountResolutionError(RegistryError):
    """Raised when the registry account id cannot be determined."""

    pass


class RegistryAPIError(RegistryError):
    """Raised when the registry API rejects a request."""

    def __init__(
        self, message: str, status_code: int | None = None, raw_body: str = ""
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.raw_body = raw_body

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"{self.message} (HTTP {self.status_code})"


class RegistryTransportError(RegistryError):
    """Raised when the registry API cannot be reached."""

    pass
