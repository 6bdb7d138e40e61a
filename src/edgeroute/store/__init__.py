"""Edgeroute config store adapters.

Thin async key-value interface over the durable store holding the
``routes``, ``flags`` and ``metadata`` records plus the ``audit/``
namespace.

Usage:
    from edgeroute.store import FileConfigStore

    store = FileConfigStore("edgeroute-store.json")
    await store.put("routes", b"[]")
    raw = await store.get("routes")
"""

from edgeroute.store.base import (
    AUDIT_PREFIX,
    FLAGS_KEY,
    METADATA_KEY,
    ROUTES_KEY,
    ConfigStore,
)
from edgeroute.store.file import FileConfigStore
from edgeroute.store.http import HttpConfigStore
from edgeroute.store.memory import MemoryConfigStore

__all__ = [
    "AUDIT_PREFIX",
    "FLAGS_KEY",
    "METADATA_KEY",
    "ROUTES_KEY",
    "ConfigStore",
    "FileConfigStore",
    "HttpConfigStore",
    "MemoryConfigStore",
    "create_store",
]


def create_store(settings) -> ConfigStore:
    """Build the store backend selected by ``settings.store_backend``."""
    if settings.store_backend == "memory":
        return MemoryConfigStore()
    if settings.store_backend == "http":
        if not settings.store_url:
            raise ValueError("store_backend 'http' requires store_url")
        return HttpConfigStore(
            settings.store_url,
            token=settings.store_token,
            timeout=settings.store_timeout,
        )
    return FileConfigStore(settings.store_path)
