"""JSON file-based config store, suitable for single-node deployments.

Storage file format (edgeroute-store.json):
    {
        "values": {
            "routes": "[{\"id\":\"edge-ping\", ...}]",
            "flags": "{\"cacheTtlMs\":60000, ...}",
            "metadata": "{\"version\":1, ...}",
            "audit/0001718000000000-00000000-3f9a2c1d": "{\"action\":\"config.bootstrap\", ...}"
        }
    }
"""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path

from edgeroute.errors import StoreError
from edgeroute.store.base import ConfigStore


class FileConfigStore(ConfigStore):
    """Single JSON file holding every key.

    Thread-safe via an asyncio lock. Values must be UTF-8 text (all
    edgeroute records are JSON).
    """

    def __init__(self, storage_path: str | Path = "edgeroute-store.json") -> None:
        """Initialize file store.

        Args:
            storage_path: Path to the JSON storage file.
        """
        self.storage_path = Path(storage_path)
        self._lock = asyncio.Lock()
        self._cache: dict[str, str] | None = None

    async def _load(self) -> dict[str, str]:
        if self._cache is not None:
            return self._cache

        if not self.storage_path.exists():
            self._cache = {}
            return self._cache

        try:
            content = await asyncio.to_thread(self.storage_path.read_text, encoding="utf-8")
            data = json.loads(content) if content.strip() else {}
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StoreError(f"Cannot read store file {self.storage_path}: {e}") from e

        values = data.get("values", {}) if isinstance(data, dict) else {}
        self._cache = {str(key): str(value) for key, value in values.items()}
        return self._cache

    async def _save(self, values: dict[str, str]) -> None:
        content = json.dumps({"values": values}, indent=2, sort_keys=True)
        tmp_path = self.storage_path.with_suffix(self.storage_path.suffix + ".tmp")
        try:
            await asyncio.to_thread(tmp_path.write_text, content, encoding="utf-8")
            await asyncio.to_thread(os.replace, tmp_path, self.storage_path)
        except OSError as e:
            raise StoreError(f"Cannot write store file {self.storage_path}: {e}") from e
        self._cache = values

    async def get(self, key: str) -> bytes | None:
        async with self._lock:
            values = await self._load()
            value = values.get(key)
            return value.encode("utf-8") if value is not None else None

    async def put(self, key: str, value: bytes) -> None:
        try:
            text = value.decode("utf-8")
        except UnicodeDecodeError as e:
            raise StoreError(f"Value for '{key}' is not UTF-8 text") from e
        async with self._lock:
            values = dict(await self._load())
            values[key] = text
            await self._save(values)

    async def list(self, prefix: str = "") -> list[str]:
        async with self._lock:
            values = await self._load()
            return sorted(key for key in values if key.startswith(prefix))

    def invalidate_cache(self) -> None:
        """Drop the in-memory copy.

        Call this after external modifications to the storage file.
        """
        self._cache = None
