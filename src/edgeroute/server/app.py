"""Edge router server: classify, match, then redirect, respond or forward."""

from __future__ import annotations

import random
import time
from collections.abc import Callable

import structlog
from aiohttp import web

from edgeroute.admin.handlers import AdminHandler
from edgeroute.admin.service import AdminService
from edgeroute.core.audit import AuditLogWriter
from edgeroute.core.cache import ConfigBundle, ConfigCache
from edgeroute.core.config import RouterSettings
from edgeroute.errors import ConfigUnavailableError, SlugMissingError
from edgeroute.observability.metrics import REQUEST_DURATION, ROUTER_REQUESTS
from edgeroute.routing.actions import execute_action
from edgeroute.routing.classifier import (
    Classification,
    PlatformSignals,
    parse_asn,
    parse_flag,
)
from edgeroute.routing.rules import RequestContext
from edgeroute.server.origin import OriginForwarder
from edgeroute.store import ConfigStore, create_store

logger = structlog.get_logger()


class RouterServer:
    """HTTP front that routes GET traffic by rule and forwards everything else."""

    def __init__(
        self,
        settings: RouterSettings,
        *,
        store: ConfigStore | None = None,
        forwarder: OriginForwarder | None = None,
        clock: Callable[[], float] = time.time,
        sampler: Callable[[], float] = random.random,
    ) -> None:
        self.settings = settings
        self.store = store if store is not None else create_store(settings)
        self.audit = AuditLogWriter(self.store, clock=clock)
        self.cache = ConfigCache(
            self.store,
            audit=self.audit,
            clock=clock,
            ttl_floor_ms=settings.cache_ttl_floor_ms,
        )
        self.admin = AdminService(self.cache, self.audit, clock=clock)
        self.forwarder = forwarder or OriginForwarder(
            settings.origin_url, timeout=settings.origin_timeout
        )
        self._sampler = sampler
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    def create_app(self) -> web.Application:
        """Build the aiohttp application. Admin routes take precedence over the catch-all."""
        app = web.Application()
        admin_handler = AdminHandler(
            self.admin,
            token=self.settings.admin_token,
            client_ip_header=self.settings.client_ip_header,
            static_allowed_ips=self.settings.admin_allowed_ips,
        )
        app.add_subapp(self.settings.admin_prefix, admin_handler.create_app())
        app.router.add_get("/healthz", self._handle_health_check)
        app.router.add_route("*", "/{path:.*}", self._handle_request)
        app.on_cleanup.append(self._on_cleanup)
        return app

    async def start(self) -> None:
        self._app = self.create_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        host, port = self.settings.parse_bind()
        site = web.TCPSite(self._runner, host, port)
        await site.start()
        logger.info(
            "Router started",
            host=host,
            port=port,
            origin=self.settings.origin_url,
            store=self.settings.store_backend,
            admin_enabled=bool(self.settings.admin_token),
        )

    async def stop(self) -> None:
        logger.info("Stopping router...")
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        self._app = None

    async def _on_cleanup(self, app: web.Application) -> None:
        await self.forwarder.close()
        await self.store.close()

    async def _handle_health_check(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "healthy"})

    def _platform_signals(self, request: web.Request) -> PlatformSignals:
        headers = request.headers
        return PlatformSignals(
            country=headers.get(self.settings.country_header),
            asn=parse_asn(headers.get(self.settings.asn_header)),
            verified_bot=parse_flag(headers.get(self.settings.bot_signal_header)),
        )

    async def _handle_request(self, request: web.Request) -> web.StreamResponse:
        start = time.perf_counter()
        response, outcome = await self._route(request)
        ROUTER_REQUESTS.labels(outcome=outcome).inc()
        REQUEST_DURATION.observe(time.perf_counter() - start)
        return response

    async def _route(self, request: web.Request) -> tuple[web.StreamResponse, str]:
        if request.method != "GET":
            return await self.forwarder.forward(request), "forward_non_get"

        try:
            bundle = await self.cache.get()
        except ConfigUnavailableError as e:
            logger.warning("No routing config, passing through", error=str(e))
            return await self.forwarder.forward(request), "unconfigured"

        classification = bundle.classifier.classify(
            request.headers, self._platform_signals(request)
        )
        path = request.path
        context = RequestContext(
            path=path,
            country=classification.country,
            device=classification.device,
            is_bot=classification.is_bot,
            query={key: request.query.getall(key) for key in request.query.keys()},
            headers={name.lower(): value for name, value in request.headers.items()},
        )

        result = bundle.matcher.match(context)
        if result is None:
            return await self.forwarder.forward(request), "passthrough"

        try:
            response = execute_action(
                result,
                request_path=path,
                query_string=request.rel_url.raw_query_string,
                classification=classification,
            )
        except SlugMissingError as e:
            logger.debug("Capture missing, passing through", rule_id=result.rule.id, error=str(e))
            return await self.forwarder.forward(request), "passthrough"

        outcome = "redirect" if result.rule.action.type == "redirect" else "response"
        self._log_decision(bundle, result.rule.id, outcome, path, response, classification)
        return response, outcome

    def _log_decision(
        self,
        bundle: ConfigBundle,
        rule_id: str,
        outcome: str,
        path: str,
        response: web.StreamResponse,
        classification: Classification,
    ) -> None:
        rate = bundle.flags.log_sample_rate
        if rate <= 0 or self._sampler() >= rate:
            return
        logger.info(
            "Routed request",
            rule_id=rule_id,
            outcome=outcome,
            path=path,
            status=response.status,
            location=response.headers.get("Location"),
            country=classification.country,
            device=classification.device,
            bot=classification.is_bot,
        )
