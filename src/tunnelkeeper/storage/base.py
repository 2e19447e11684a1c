from abc import ABC, abstractmethod
from typing import Any


class StorageBackend(ABC):
    """Abstract base class for key-value storage backends."""

    @abstractmethod
    async def get(self, key: str, default: Any = None) -> Any:
        """Return the value stored under key, or default when absent."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value under key."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove key if present."""
        pass

    async def contains(self, key: str) -> bool:
        """Check whether a key has ever been stored."""
        sentinel = object()
        return await self.get(key, sentinel) is not sentinel
