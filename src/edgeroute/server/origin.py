"""Pass-through forwarding of unmatched traffic to the origin."""

from __future__ import annotations

from collections.abc import Iterable

import httpx
import structlog
from aiohttp import web

from edgeroute.observability.metrics import ORIGIN_ERRORS

logger = structlog.get_logger()

HOP_BY_HOP = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
        "host",
    }
)

# httpx hands back a decoded body, so length and encoding no longer apply.
_RESPONSE_DROP = HOP_BY_HOP | {"content-length", "content-encoding"}


def filter_headers(
    items: Iterable[tuple[str, str]], drop: frozenset[str] = HOP_BY_HOP
) -> list[tuple[str, str]]:
    """Drop listed headers, keeping repeated ones (e.g. Set-Cookie) as separate pairs."""
    return [(name, value) for name, value in items if name.lower() not in drop]


class OriginForwarder:
    """Forwards requests verbatim (method, path, query, headers, body) to the origin."""

    def __init__(
        self,
        origin_url: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.origin_url = origin_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=False,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def forward(self, request: web.Request) -> web.Response:
        """Relay the request and return the origin's response.

        Transport failures become ``502 Bad Gateway``.
        """
        url = f"{self.origin_url}{request.raw_path}"
        headers = filter_headers(request.headers.items())
        headers.append(("X-Forwarded-Host", request.host))
        if request.remote:
            headers.append(("X-Forwarded-For", request.remote))
        body = await request.read() if request.body_exists else None

        try:
            resp = await self._get_client().request(
                request.method,
                url,
                headers=headers,
                content=body,
            )
        except httpx.TimeoutException as e:
            ORIGIN_ERRORS.labels(kind="timeout").inc()
            logger.warning("Origin request timed out", url=url, error=str(e))
            return web.Response(status=502, text="Origin timed out")
        except httpx.RequestError as e:
            ORIGIN_ERRORS.labels(kind="transport").inc()
            logger.error("Origin request failed", url=url, error=str(e))
            return web.Response(status=502, text="Origin unreachable")

        return web.Response(
            status=resp.status_code,
            headers=filter_headers(resp.headers.multi_items(), _RESPONSE_DROP),
            body=resp.content,
        )
