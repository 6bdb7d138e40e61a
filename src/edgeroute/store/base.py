"""Abstract key-value interface used by the config cache and admin layer."""

from __future__ import annotations

from abc import ABC, abstractmethod

ROUTES_KEY = "routes"
FLAGS_KEY = "flags"
METADATA_KEY = "metadata"
AUDIT_PREFIX = "audit/"


class ConfigStore(ABC):
    """Durable key-value store with get/put/list.

    Implementations do no interpretation of values. I/O failures are
    raised as ``StoreError``.
    """

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Return the stored value, or None if the key is absent."""
        ...

    @abstractmethod
    async def put(self, key: str, value: bytes) -> None:
        """Store value under key, replacing any previous value."""
        ...

    @abstractmethod
    async def list(self, prefix: str = "") -> list[str]:
        """Return all keys starting with prefix, sorted."""
        ...

    async def close(self) -> None:
        """Release any held resources."""
        return None
