"""Remote key-value service client.

Speaks a minimal HTTP protocol:

    GET  {base}/values/{key}      -> 200 raw bytes | 404
    PUT  {base}/values/{key}      <- raw bytes, 2xx on success
    GET  {base}/keys?prefix=...   -> 200 {"keys": ["..."]}
"""

from __future__ import annotations

from urllib.parse import quote

import httpx
import structlog

from edgeroute.errors import StoreError
from edgeroute.store.base import ConfigStore

logger = structlog.get_logger()


class HttpConfigStore(ConfigStore):
    """Config store backed by a remote key-value service."""

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    @staticmethod
    def _value_path(key: str) -> str:
        return "/values/" + quote(key, safe="")

    async def get(self, key: str) -> bytes | None:
        try:
            response = await self._client.get(self._value_path(key))
        except httpx.RequestError as e:
            raise StoreError(f"GET {key} failed: {e}") from e
        if response.status_code == 404:
            return None
        if response.is_error:
            raise StoreError(f"GET {key} returned HTTP {response.status_code}")
        return response.content

    async def put(self, key: str, value: bytes) -> None:
        try:
            response = await self._client.put(
                self._value_path(key),
                content=value,
                headers={"Content-Type": "application/octet-stream"},
            )
        except httpx.RequestError as e:
            raise StoreError(f"PUT {key} failed: {e}") from e
        if response.is_error:
            raise StoreError(f"PUT {key} returned HTTP {response.status_code}")

    async def list(self, prefix: str = "") -> list[str]:
        try:
            response = await self._client.get("/keys", params={"prefix": prefix})
        except httpx.RequestError as e:
            raise StoreError(f"LIST {prefix!r} failed: {e}") from e
        if response.is_error:
            raise StoreError(f"LIST {prefix!r} returned HTTP {response.status_code}")
        try:
            data = response.json()
        except ValueError as e:
            raise StoreError(f"LIST {prefix!r} returned malformed JSON") from e
        keys = data.get("keys", []) if isinstance(data, dict) else data
        return sorted(str(key) for key in keys if str(key).startswith(prefix))

    async def close(self) -> None:
        await self._client.aclose()
        logger.debug("Remote store client closed")
