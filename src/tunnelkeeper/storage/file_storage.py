"""File-based storage implementation."""

from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from ..core.constants import DEFAULT_DATA_DIR, STORE_FILENAME
from ..core.exceptions import StorageError
from .base import StorageBackend


class FileStorage(StorageBackend):
    """
    File-based key-value storage backend.\n
    All keys live in a single JSON document which is read once and
    rewritten through a temporary file on every change.
    Attributes:
        base_dir (Path): Base directory for storage.
        path (Path): The JSON document holding every key.
    """

    def __init__(self, base_dir: Path | None = None) -> None:
        """Initialize file storage."""
        self.base_dir = base_dir or DEFAULT_DATA_DIR
        self.path = self.base_dir / STORE_FILENAME
        self._data: dict[str, Any] | None = None

        self.base_dir.mkdir(parents=True, exist_ok=True)

    async def get(self, key: str, default: Any = None) -> Any:
        """Return a copy of the value stored under key."""
        data = await self._load()
        if key not in data:
            return default
        return copy.deepcopy(data[key])

    async def set(self, key: str, value: Any) -> None:
        """Store value under key and persist the document."""
        data = await self._load()
        data[key] = copy.deepcopy(value)
        await self._write(data)

    async def delete(self, key: str) -> None:
        """Remove key and persist the document."""
        data = await self._load()
        if key in data:
            del data[key]
            await self._write(data)

    async def _load(self) -> dict[str, Any]:
        if self._data is not None:
            return self._data

        try:
            if not self.path.exists():
                self._data = {}
                return self._data

            async with aiofiles.open(self.path) as f:
                content = await f.read()

            loaded = json.loads(content) if content.strip() else {}
            if not isinstance(loaded, dict):
                raise ValueError("store document is not a JSON object")
            self._data = loaded
            return self._data

        except Exception as e:
            raise StorageError(f"Failed to load store: {e}") from e

    async def _write(self, data: dict[str, Any]) -> None:
        tmp_path = self.path.with_suffix(".tmp")
        try:
            payload = json.dumps(data, indent=2, default=str)

            async with aiofiles.open(tmp_path, "w") as f:
                await f.write(payload)

            await aiofiles.os.replace(tmp_path, self.path)

        except Exception as e:
            raise StorageError(f"Failed to save store: {e}") from e
