"""JSON-over-HTTP admin API.

Mounted as a sub-application under ``admin_prefix`` (``/__admin/api``):

    GET    /routes              current routes, etag, version, disabled rules
    PUT    /routes              replace all routes (If-Match)
    POST   /routes/validate     dry-run validation with warnings
    PATCH  /routes/{rule_id}    merge fields into one rule (If-Match)
    DELETE /routes/{rule_id}    remove one rule (If-Match)
    GET    /flags               current flags
    PUT    /flags               replace flags
    POST   /cache/invalidate    drop the cached bundle and reload
    GET    /audit?limit=N       newest audit entries first
    GET    /export              routes + flags + metadata document
    POST   /import              replace routes (and flags) from an export (If-Match)
    GET    /meta                admin page title and read-only flag
    GET    /metrics             Prometheus metrics

Every endpoint requires the admin token and passes the IP allow-list.
"""

from __future__ import annotations

import json
from typing import Any

import structlog
from aiohttp import web

from edgeroute.admin.auth import AdminGuard, extract_token
from edgeroute.admin.service import AdminService
from edgeroute.core.cache import ConfigBundle
from edgeroute.core.models import AuditEntry, flags_to_data, routes_to_data
from edgeroute.errors import (
    AdminAuthError,
    ConcurrencyConflictError,
    ConfigUnavailableError,
    EdgeRouteError,
    RouteNotFoundError,
    RouteValidationError,
    StoreError,
)
from edgeroute.observability.metrics import generate_metrics, get_content_type

logger = structlog.get_logger()

ACTOR_HEADER = "X-Admin-Actor"
DEFAULT_AUDIT_LIMIT = 50

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store",
}


def error_response(status: int, code: str, message: str, **extra: Any) -> web.Response:
    return web.json_response({"error": code, "message": message, **extra}, status=status)


def map_error(exc: EdgeRouteError) -> web.Response:
    """Translate a domain error into the admin API's JSON error body."""
    if isinstance(exc, RouteValidationError):
        return error_response(400, "validation_error", str(exc), details=exc.details)
    if isinstance(exc, AdminAuthError):
        code = "unauthorized" if exc.status == 401 else "forbidden"
        response = error_response(exc.status, code, exc.reason)
        if exc.status == 401:
            response.headers["WWW-Authenticate"] = 'Bearer realm="edgeroute-admin"'
        return response
    if isinstance(exc, RouteNotFoundError):
        return error_response(404, "not_found", str(exc), id=exc.rule_id)
    if isinstance(exc, ConcurrencyConflictError):
        return error_response(412, "conflict", str(exc), etag=exc.actual)
    if isinstance(exc, (ConfigUnavailableError, StoreError)):
        return error_response(503, "config_unavailable", str(exc))
    return error_response(500, "internal_error", str(exc))


@web.middleware
async def admin_middleware(request: web.Request, handler) -> web.StreamResponse:
    try:
        response = await handler(request)
    except EdgeRouteError as e:
        response = map_error(e)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


def _quoted(etag: str) -> str:
    return f'"{etag}"'


def _bundle_response(bundle: ConfigBundle, body: dict[str, Any], status: int = 200) -> web.Response:
    body = {**body, "etag": bundle.etag, "version": bundle.version}
    return web.json_response(body, status=status, headers={"ETag": _quoted(bundle.etag)})


def _routes_body(bundle: ConfigBundle) -> dict[str, Any]:
    return {
        "routes": routes_to_data(bundle.routes),
        "disabled": bundle.rule_errors,
        "updatedAt": bundle.metadata.updated_at,
        "updatedBy": bundle.metadata.updated_by,
    }


def _audit_body(entry: AuditEntry) -> dict[str, Any]:
    return entry.model_dump(mode="json", by_alias=True, exclude_none=True)


class AdminHandler:
    """aiohttp handlers for the admin API."""

    def __init__(
        self,
        service: AdminService,
        *,
        token: str | None,
        client_ip_header: str | None = None,
        static_allowed_ips: list[str] | None = None,
    ) -> None:
        self.service = service
        self._token = token
        self._client_ip_header = client_ip_header
        self._static_allowed_ips = static_allowed_ips or []

    def create_app(self) -> web.Application:
        app = web.Application(middlewares=[admin_middleware])
        self.register_routes(app)
        return app

    def register_routes(self, app: web.Application) -> None:
        app.router.add_get("/routes", self.handle_get_routes)
        app.router.add_put("/routes", self.handle_replace_routes)
        app.router.add_post("/routes/validate", self.handle_validate_routes)
        app.router.add_patch("/routes/{rule_id}", self.handle_patch_route)
        app.router.add_delete("/routes/{rule_id}", self.handle_delete_route)
        app.router.add_get("/flags", self.handle_get_flags)
        app.router.add_put("/flags", self.handle_replace_flags)
        app.router.add_post("/cache/invalidate", self.handle_invalidate_cache)
        app.router.add_get("/audit", self.handle_audit)
        app.router.add_get("/export", self.handle_export)
        app.router.add_post("/import", self.handle_import)
        app.router.add_get("/meta", self.handle_meta)
        app.router.add_get("/metrics", self.handle_metrics)

    def _client_ip(self, request: web.Request) -> str | None:
        if self._client_ip_header:
            forwarded = request.headers.get(self._client_ip_header, "").strip()
            if forwarded:
                return forwarded
        return request.remote

    async def _authorize(self, request: web.Request) -> str:
        """Check token and IP; return the actor name for audit records.

        The token is checked before any config is loaded. The allow-list
        is the union of the process setting and the ``allowedAdminIps``
        flag of the current bundle.
        """
        client_ip = self._client_ip(request)
        AdminGuard(self._token).check_token(
            extract_token(request.headers, request.query), client_ip
        )

        allowed = list(self._static_allowed_ips)
        try:
            bundle = await self.service.current()
        except ConfigUnavailableError:
            bundle = self.service.cached()
        if bundle is not None:
            allowed.extend(bundle.flags.allowed_admin_ips)
        AdminGuard(self._token, allowed).check_ip(client_ip)
        return request.headers.get(ACTOR_HEADER, "").strip() or f"admin@{client_ip or 'unknown'}"

    async def _json_body(self, request: web.Request) -> Any:
        try:
            return await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise RouteValidationError(
                "Request body is not valid JSON", [{"loc": "", "msg": str(e)}]
            ) from e

    async def handle_get_routes(self, request: web.Request) -> web.Response:
        await self._authorize(request)
        bundle = await self.service.get_routes()
        return _bundle_response(bundle, _routes_body(bundle))

    async def handle_replace_routes(self, request: web.Request) -> web.Response:
        actor = await self._authorize(request)
        payload = await self._json_body(request)
        bundle = await self.service.replace_routes(
            payload, actor=actor, if_match=request.headers.get("If-Match")
        )
        return _bundle_response(bundle, _routes_body(bundle))

    async def handle_validate_routes(self, request: web.Request) -> web.Response:
        await self._authorize(request)
        payload = await self._json_body(request)
        report = self.service.validate_routes(payload)
        return web.json_response(report.to_dict(), status=200 if report.valid else 400)

    async def handle_patch_route(self, request: web.Request) -> web.Response:
        actor = await self._authorize(request)
        payload = await self._json_body(request)
        bundle = await self.service.patch_route(
            request.match_info["rule_id"],
            payload,
            actor=actor,
            if_match=request.headers.get("If-Match"),
        )
        return _bundle_response(bundle, _routes_body(bundle))

    async def handle_delete_route(self, request: web.Request) -> web.Response:
        actor = await self._authorize(request)
        bundle = await self.service.delete_route(
            request.match_info["rule_id"],
            actor=actor,
            if_match=request.headers.get("If-Match"),
        )
        return _bundle_response(bundle, _routes_body(bundle))

    async def handle_get_flags(self, request: web.Request) -> web.Response:
        await self._authorize(request)
        bundle = await self.service.get_flags()
        return _bundle_response(bundle, {"flags": flags_to_data(bundle.flags)})

    async def handle_replace_flags(self, request: web.Request) -> web.Response:
        actor = await self._authorize(request)
        payload = await self._json_body(request)
        bundle = await self.service.replace_flags(payload, actor=actor)
        return _bundle_response(bundle, {"flags": flags_to_data(bundle.flags)})

    async def handle_invalidate_cache(self, request: web.Request) -> web.Response:
        actor = await self._authorize(request)
        bundle = await self.service.invalidate_cache(actor=actor)
        return _bundle_response(bundle, {"invalidated": True})

    async def handle_audit(self, request: web.Request) -> web.Response:
        await self._authorize(request)
        try:
            limit = int(request.query.get("limit", DEFAULT_AUDIT_LIMIT))
        except ValueError as e:
            raise RouteValidationError(
                "limit must be an integer", [{"loc": "limit", "msg": str(e)}]
            ) from e
        entries = await self.service.list_audit(limit)
        return web.json_response({"entries": [_audit_body(entry) for entry in entries]})

    async def handle_export(self, request: web.Request) -> web.Response:
        await self._authorize(request)
        document = await self.service.export_config()
        return web.json_response(document, headers={"ETag": _quoted(document["etag"])})

    async def handle_import(self, request: web.Request) -> web.Response:
        actor = await self._authorize(request)
        payload = await self._json_body(request)
        bundle = await self.service.import_config(
            payload, actor=actor, if_match=request.headers.get("If-Match")
        )
        return _bundle_response(bundle, _routes_body(bundle))

    async def handle_meta(self, request: web.Request) -> web.Response:
        await self._authorize(request)
        bundle = await self.service.current()
        return web.json_response(
            {"uiTitle": bundle.flags.ui_title, "uiReadonly": bundle.flags.ui_readonly}
        )

    async def handle_metrics(self, request: web.Request) -> web.Response:
        await self._authorize(request)
        return web.Response(body=generate_metrics(), headers={"Content-Type": get_content_type()})
