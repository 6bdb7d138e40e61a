"""In-process store for tests and local development."""

from __future__ import annotations

from edgeroute.store.base import ConfigStore


class MemoryConfigStore(ConfigStore):
    """Dictionary-backed store. Contents vanish with the process."""

    def __init__(self, initial: dict[str, bytes] | None = None) -> None:
        self._data: dict[str, bytes] = dict(initial or {})

    async def get(self, key: str) -> bytes | None:
        return self._data.get(key)

    async def put(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    async def list(self, prefix: str = "") -> list[str]:
        return sorted(key for key in self._data if key.startswith(prefix))

    def __len__(self) -> int:
        return len(self._data)
