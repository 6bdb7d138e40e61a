"""HTTP-level tests for the router and the admin API."""

from __future__ import annotations

import httpx
import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from edgeroute.core.config import RouterSettings
from edgeroute.core.models import (
    FlagsConfig,
    MetadataRecord,
    encode_flags,
    encode_model,
    encode_routes,
)
from edgeroute.server import OriginForwarder, RouterServer
from edgeroute.server.origin import filter_headers
from edgeroute.store import MemoryConfigStore

IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)
ADMIN = {"Authorization": "Bearer s3cret"}


class FakeForwarder:
    """Stands in for the origin: records what would have been forwarded."""

    def __init__(self) -> None:
        self.forwarded: list[tuple[str, str]] = []
        self.closed = False

    async def forward(self, request: web.Request) -> web.Response:
        self.forwarded.append((request.method, request.path_qs))
        return web.Response(text="origin")

    async def close(self) -> None:
        self.closed = True


def seeded_store(routes) -> MemoryConfigStore:
    metadata = MetadataRecord(version=3, updated_at="2024-01-01T00:00:00+00:00", updated_by="t")
    return MemoryConfigStore(
        {
            "routes": encode_routes(routes),
            "flags": encode_flags(FlagsConfig()),
            "metadata": encode_model(metadata),
        }
    )


@pytest.fixture
def forwarder():
    return FakeForwarder()


@pytest.fixture
def settings():
    return RouterSettings(store_backend="memory", admin_token="s3cret")


async def start_client(server: RouterServer) -> TestClient:
    client = TestClient(TestServer(server.create_app()))
    await client.start_server()
    return client


class TestRouting:
    """Tests for the request path."""

    @pytest.mark.asyncio
    async def test_ru_mobile_redirected(self, settings, forwarder, casino_routes, clock):
        server = RouterServer(
            settings, store=seeded_store(casino_routes), forwarder=forwarder, clock=clock
        )
        client = await start_client(server)
        try:
            resp = await client.get(
                "/casino/spins100",
                headers={"CF-IPCountry": "RU", "User-Agent": IPHONE_UA},
                allow_redirects=False,
            )
            assert resp.status == 302
            assert resp.headers["Location"] == "https://partner.example/go?bonus=spins100"
            assert resp.headers["Cache-Control"] == "no-store"
            assert forwarder.forwarded == []
        finally:
            await client.close()
        assert forwarder.closed is True

    @pytest.mark.asyncio
    async def test_desktop_passes_through(self, settings, forwarder, casino_routes, clock):
        server = RouterServer(
            settings, store=seeded_store(casino_routes), forwarder=forwarder, clock=clock
        )
        client = await start_client(server)
        try:
            resp = await client.get(
                "/casino/spins100?x=1",
                headers={"CF-IPCountry": "RU", "User-Agent": DESKTOP_UA},
                allow_redirects=False,
            )
            assert resp.status == 200
            assert await resp.text() == "origin"
            assert forwarder.forwarded == [("GET", "/casino/spins100?x=1")]
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_verified_bot_passes_through(self, settings, forwarder, casino_routes, clock):
        server = RouterServer(
            settings, store=seeded_store(casino_routes), forwarder=forwarder, clock=clock
        )
        client = await start_client(server)
        try:
            resp = await client.get(
                "/casino/spins100",
                headers={"CF-IPCountry": "RU", "User-Agent": IPHONE_UA, "X-Verified-Bot": "1"},
                allow_redirects=False,
            )
            assert await resp.text() == "origin"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_synthetic_response(self, settings, forwarder, casino_routes, clock):
        server = RouterServer(
            settings, store=seeded_store(casino_routes), forwarder=forwarder, clock=clock
        )
        client = await start_client(server)
        try:
            resp = await client.get("/__edge/ping")
            assert resp.status == 200
            assert await resp.text() == "pong"
            assert forwarder.forwarded == []
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_non_get_forwarded(self, settings, forwarder, casino_routes, clock):
        server = RouterServer(
            settings, store=seeded_store(casino_routes), forwarder=forwarder, clock=clock
        )
        client = await start_client(server)
        try:
            resp = await client.post(
                "/casino/spins100",
                data=b"payload",
                headers={"CF-IPCountry": "RU", "User-Agent": IPHONE_UA},
            )
            assert await resp.text() == "origin"
            assert forwarder.forwarded == [("POST", "/casino/spins100")]
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_unconfigured_store_forwards(self, settings, forwarder, clock):
        """Requests still reach the origin when no routes can be loaded."""
        store = MemoryConfigStore({"metadata": b'{"version":1,"updatedAt":"x","updatedBy":"y"}'})
        server = RouterServer(settings, store=store, forwarder=forwarder, clock=clock)
        client = await start_client(server)
        try:
            resp = await client.get("/casino/spins100")
            assert await resp.text() == "origin"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_empty_store_bootstrapped_on_first_request(self, settings, forwarder, clock):
        store = MemoryConfigStore()
        server = RouterServer(settings, store=store, forwarder=forwarder, clock=clock)
        client = await start_client(server)
        try:
            resp = await client.get("/__edge/ping")
            assert await resp.text() == "ok"
            assert await store.get("metadata") is not None
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_health_check(self, settings, forwarder, clock):
        server = RouterServer(settings, store=MemoryConfigStore(), forwarder=forwarder, clock=clock)
        client = await start_client(server)
        try:
            resp = await client.get("/healthz")
            assert resp.status == 200
            assert await resp.json() == {"status": "healthy"}
        finally:
            await client.close()


class TestAdminApi:
    """Tests for the admin endpoints."""

    @pytest.mark.asyncio
    async def test_missing_token_rejected(self, settings, forwarder, casino_routes, clock):
        server = RouterServer(
            settings, store=seeded_store(casino_routes), forwarder=forwarder, clock=clock
        )
        client = await start_client(server)
        try:
            resp = await client.get("/__admin/api/routes")
            assert resp.status == 401
            assert "Bearer" in resp.headers["WWW-Authenticate"]
            assert resp.headers["X-Frame-Options"] == "DENY"
            assert (await resp.json())["error"] == "unauthorized"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_admin_closed_without_configured_token(self, forwarder, casino_routes, clock):
        settings = RouterSettings(store_backend="memory", admin_token=None)
        server = RouterServer(
            settings, store=seeded_store(casino_routes), forwarder=forwarder, clock=clock
        )
        client = await start_client(server)
        try:
            resp = await client.get("/__admin/api/routes", headers=ADMIN)
            assert resp.status == 403
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_unauthenticated_request_does_not_touch_store(
        self, settings, forwarder, clock
    ):
        """Rejected requests must not bootstrap an empty store."""
        store = MemoryConfigStore()
        server = RouterServer(settings, store=store, forwarder=forwarder, clock=clock)
        client = await start_client(server)
        try:
            missing = await client.get("/__admin/api/routes")
            wrong = await client.put(
                "/__admin/api/flags",
                json={"strictBots": True},
                headers={"Authorization": "Bearer guess"},
            )
            assert missing.status == 401
            assert wrong.status == 401
            assert len(store) == 0
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_closed_admin_does_not_touch_store(self, forwarder, clock):
        settings = RouterSettings(store_backend="memory", admin_token=None)
        store = MemoryConfigStore()
        server = RouterServer(settings, store=store, forwarder=forwarder, clock=clock)
        client = await start_client(server)
        try:
            resp = await client.get("/__admin/api/meta", headers=ADMIN)
            assert resp.status == 403
            assert len(store) == 0
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_invalid_admin_ips_flag_rejected(
        self, settings, forwarder, casino_routes, clock
    ):
        server = RouterServer(
            settings, store=seeded_store(casino_routes), forwarder=forwarder, clock=clock
        )
        client = await start_client(server)
        try:
            resp = await client.put(
                "/__admin/api/flags", json={"allowedAdminIps": ["office-gateway"]}, headers=ADMIN
            )
            assert resp.status == 400
            assert (await resp.json())["error"] == "validation_error"

            still_open = await client.get("/__admin/api/flags", headers=ADMIN)
            assert still_open.status == 200
            assert (await still_open.json())["flags"]["allowedAdminIps"] == []
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_ip_allow_list(self, forwarder, casino_routes, clock):
        settings = RouterSettings(
            store_backend="memory", admin_token="s3cret", admin_allowed_ips=["10.0.0.0/8"]
        )
        server = RouterServer(
            settings, store=seeded_store(casino_routes), forwarder=forwarder, clock=clock
        )
        client = await start_client(server)
        try:
            denied = await client.get(
                "/__admin/api/routes", headers={**ADMIN, "CF-Connecting-IP": "192.168.1.5"}
            )
            allowed = await client.get(
                "/__admin/api/routes", headers={**ADMIN, "CF-Connecting-IP": "10.1.2.3"}
            )
            assert denied.status == 403
            assert allowed.status == 200
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_get_routes(self, settings, forwarder, casino_routes, clock):
        server = RouterServer(
            settings, store=seeded_store(casino_routes), forwarder=forwarder, clock=clock
        )
        client = await start_client(server)
        try:
            resp = await client.get("/__admin/api/routes", headers=ADMIN)
            body = await resp.json()
            assert resp.status == 200
            assert [rule["id"] for rule in body["routes"]] == ["casino-ru-mobile", "ping"]
            assert body["version"] == 3
            assert resp.headers["ETag"] == f'"{body["etag"]}"'
            assert resp.headers["Cache-Control"] == "no-store"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_put_routes_with_etag(
        self, settings, forwarder, casino_routes, casino_payload, clock
    ):
        server = RouterServer(
            settings, store=seeded_store(casino_routes), forwarder=forwarder, clock=clock
        )
        client = await start_client(server)
        try:
            current = await client.get("/__admin/api/routes", headers=ADMIN)
            etag = current.headers["ETag"]

            resp = await client.put(
                "/__admin/api/routes",
                json=casino_payload[1:],
                headers={**ADMIN, "If-Match": etag, "X-Admin-Actor": "ops@example"},
            )
            body = await resp.json()
            assert resp.status == 200
            assert body["version"] == 4
            assert body["updatedBy"] == "ops@example"

            # The removed rule no longer redirects.
            routed = await client.get(
                "/casino/spins100",
                headers={"CF-IPCountry": "RU", "User-Agent": IPHONE_UA},
                allow_redirects=False,
            )
            assert await routed.text() == "origin"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_stale_etag_conflict(
        self, settings, forwarder, casino_routes, casino_payload, clock
    ):
        server = RouterServer(
            settings, store=seeded_store(casino_routes), forwarder=forwarder, clock=clock
        )
        client = await start_client(server)
        try:
            resp = await client.put(
                "/__admin/api/routes",
                json=casino_payload,
                headers={**ADMIN, "If-Match": '"deadbeef"'},
            )
            body = await resp.json()
            assert resp.status == 412
            assert body["error"] == "conflict"
            assert body["etag"] != "deadbeef"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_invalid_body(self, settings, forwarder, casino_routes, clock):
        server = RouterServer(
            settings, store=seeded_store(casino_routes), forwarder=forwarder, clock=clock
        )
        client = await start_client(server)
        try:
            resp = await client.put(
                "/__admin/api/routes",
                data=b"{not json",
                headers={**ADMIN, "Content-Type": "application/json"},
            )
            assert resp.status == 400
            assert (await resp.json())["error"] == "validation_error"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_delete_unknown_route(self, settings, forwarder, casino_routes, clock):
        server = RouterServer(
            settings, store=seeded_store(casino_routes), forwarder=forwarder, clock=clock
        )
        client = await start_client(server)
        try:
            resp = await client.delete("/__admin/api/routes/missing", headers=ADMIN)
            assert resp.status == 404
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_audit_lists_mutation(
        self, settings, forwarder, casino_routes, casino_payload, clock
    ):
        server = RouterServer(
            settings, store=seeded_store(casino_routes), forwarder=forwarder, clock=clock
        )
        client = await start_client(server)
        try:
            await client.put("/__admin/api/routes", json=casino_payload, headers=ADMIN)
            resp = await client.get("/__admin/api/audit?limit=5", headers=ADMIN)
            entries = (await resp.json())["entries"]
            assert [entry["action"] for entry in entries] == ["routes.replace"]
            assert entries[0]["actor"] == "admin@127.0.0.1"
            assert "prevHash" in entries[0]
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_meta_and_metrics(self, settings, forwarder, casino_routes, clock):
        server = RouterServer(
            settings, store=seeded_store(casino_routes), forwarder=forwarder, clock=clock
        )
        client = await start_client(server)
        try:
            meta = await client.get("/__admin/api/meta", headers=ADMIN)
            assert await meta.json() == {"uiTitle": "Edgeroute", "uiReadonly": False}

            metrics = await client.get("/__admin/api/metrics", headers=ADMIN)
            assert metrics.status == 200
            assert "edgeroute_requests_total" in await metrics.text()
        finally:
            await client.close()


class TestOriginForwarder:
    """Tests for OriginForwarder behind the router, with a mocked origin."""

    def _server(self, settings, casino_routes, clock, handler) -> RouterServer:
        forwarder = OriginForwarder(
            "http://origin.internal/", transport=httpx.MockTransport(handler)
        )
        return RouterServer(
            settings, store=seeded_store(casino_routes), forwarder=forwarder, clock=clock
        )

    @pytest.mark.asyncio
    async def test_forwards_method_query_body_and_headers(self, settings, casino_routes, clock):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["body"] = request.content
            seen["headers"] = request.headers
            return httpx.Response(201, content=b"created")

        client = await start_client(self._server(settings, casino_routes, clock, handler))
        try:
            resp = await client.post(
                "/submit?a=1&b=2",
                data=b"payload",
                headers={"X-Request-Id": "r-1", "Proxy-Authorization": "Basic Zm9v"},
            )
            assert resp.status == 201
            assert await resp.text() == "created"
        finally:
            await client.close()

        assert seen["method"] == "POST"
        assert seen["url"] == "http://origin.internal/submit?a=1&b=2"
        assert seen["body"] == b"payload"
        assert seen["headers"]["x-request-id"] == "r-1"
        assert seen["headers"]["host"] == "origin.internal"
        assert seen["headers"]["x-forwarded-host"].startswith("127.0.0.1")
        assert seen["headers"]["x-forwarded-for"] == "127.0.0.1"
        assert "proxy-authorization" not in seen["headers"]

    @pytest.mark.asyncio
    async def test_repeated_response_headers_kept(self, settings, casino_routes, clock):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                headers=[
                    ("Set-Cookie", "a=1; Path=/"),
                    ("Set-Cookie", "b=2; Path=/"),
                    ("Keep-Alive", "timeout=5"),
                    ("X-Origin", "yes"),
                ],
                content=b"ok",
            )

        client = await start_client(self._server(settings, casino_routes, clock, handler))
        try:
            resp = await client.get("/about")
            assert resp.status == 200
            assert resp.headers.getall("Set-Cookie") == ["a=1; Path=/", "b=2; Path=/"]
            assert resp.headers["X-Origin"] == "yes"
            assert "Keep-Alive" not in resp.headers
            assert await resp.text() == "ok"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_timeout_is_bad_gateway(self, settings, casino_routes, clock):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        client = await start_client(self._server(settings, casino_routes, clock, handler))
        try:
            resp = await client.get("/about")
            assert resp.status == 502
            assert resp.content_type == "text/plain"
            assert await resp.text() == "Origin timed out"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_transport_error_is_bad_gateway(self, settings, casino_routes, clock):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = await start_client(self._server(settings, casino_routes, clock, handler))
        try:
            resp = await client.get("/about")
            assert resp.status == 502
            assert resp.content_type == "text/plain"
            assert await resp.text() == "Origin unreachable"
        finally:
            await client.close()

    def test_filter_headers(self):
        headers = filter_headers(
            [
                ("Connection", "keep-alive"),
                ("Transfer-Encoding", "chunked"),
                ("Host", "edge.example"),
                ("Set-Cookie", "a=1"),
                ("Set-Cookie", "b=2"),
            ]
        )
        assert headers == [("Set-Cookie", "a=1"), ("Set-Cookie", "b=2")]
