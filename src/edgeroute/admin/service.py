"""Admin mutation service.

Every successful mutation follows the same commit sequence:

1. write the new routes and/or flags records
2. write fresh metadata (version + 1, actor, timestamp)
3. invalidate the config cache
4. force a reload to obtain the new etag; a stale fallback counts as failure
5. append an audit entry with previous/new etag and the byte delta

Payloads are validated and the ``If-Match`` etag is checked before the
first write. A failure after the first write is audited with the error
text and then re-raised.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from edgeroute.core.audit import AuditLogWriter
from edgeroute.core.cache import ConfigBundle, ConfigCache, utc_timestamp
from edgeroute.core.models import (
    AuditEntry,
    FlagsConfig,
    MetadataRecord,
    RedirectAction,
    RouteRule,
    encode_flags,
    encode_model,
    encode_routes,
    flags_to_data,
    normalize_etag,
    routes_to_data,
    validate_flags,
    validate_routes,
)
from edgeroute.errors import (
    ConcurrencyConflictError,
    ConfigUnavailableError,
    RouteNotFoundError,
    RouteValidationError,
)
from edgeroute.observability.metrics import ADMIN_MUTATIONS
from edgeroute.routing.matcher import RuleMatcher
from edgeroute.routing.rules import PrefixPath, RegexPath
from edgeroute.store.base import FLAGS_KEY, METADATA_KEY, ROUTES_KEY

logger = structlog.get_logger()


@dataclass
class ValidationReport:
    """Outcome of a dry-run validation. Warnings never block a save."""

    valid: bool
    routes: int = 0
    errors: list[dict[str, Any]] | None = None
    warnings: list[dict[str, Any]] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "routes": self.routes,
            "errors": self.errors or [],
            "warnings": self.warnings or [],
        }


def route_warnings(routes: Sequence[RouteRule]) -> list[dict[str, Any]]:
    """Rules that will load but can never fire as intended."""
    warnings = []
    for compiled in RuleMatcher(routes).routes:
        if compiled.error is not None:
            warnings.append(
                {"id": compiled.id, "msg": f"invalid path regex, rule never matches: {compiled.error}"}
            )
            continue
        action = compiled.rule.action
        if isinstance(action, RedirectAction) and action.needs_capture():
            capturing = [
                p for p in compiled.path_patterns if isinstance(p, (RegexPath, PrefixPath))
            ]
            if not capturing:
                warnings.append(
                    {
                        "id": compiled.id,
                        "msg": "redirect needs a path capture but no pattern captures one",
                    }
                )
    return warnings


def _bundle_size(routes: Sequence[RouteRule], flags: FlagsConfig) -> int:
    return len(encode_routes(routes)) + len(encode_flags(flags))


class AdminService:
    """Reads and mutates the stored configuration on behalf of admins."""

    def __init__(
        self,
        cache: ConfigCache,
        audit: AuditLogWriter,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cache = cache
        self._store = cache.store
        self._audit = audit
        self._clock = clock
        self._lock = asyncio.Lock()

    def cached(self) -> ConfigBundle | None:
        """Last loaded bundle without touching the store."""
        return self._cache.current

    async def current(self) -> ConfigBundle:
        """Current bundle. Raises ``ConfigUnavailableError`` when none can be loaded."""
        return await self._cache.get()

    async def get_routes(self) -> ConfigBundle:
        return await self._cache.get()

    async def get_flags(self) -> ConfigBundle:
        return await self._cache.get()

    async def replace_routes(
        self, payload: Any, *, actor: str, if_match: str | None = None
    ) -> ConfigBundle:
        routes = validate_routes(payload)
        return await self._commit("routes.replace", actor, routes=routes, if_match=if_match)

    async def patch_route(
        self, rule_id: str, payload: Any, *, actor: str, if_match: str | None = None
    ) -> ConfigBundle:
        """Shallow-merge ``payload`` into one rule, keeping its position."""
        if not isinstance(payload, dict):
            raise RouteValidationError(
                "Patch payload must be an object", [{"loc": "", "msg": "expected a JSON object"}]
            )
        if "id" in payload and payload["id"] != rule_id:
            raise RouteValidationError(
                "Route id cannot be changed by a patch",
                [{"loc": "id", "msg": f"expected '{rule_id}'"}],
            )

        def apply(current: Sequence[RouteRule]) -> list[RouteRule]:
            data = routes_to_data(current)
            for index, rule in enumerate(data):
                if rule["id"] == rule_id:
                    data[index] = {**rule, **payload}
                    return validate_routes(data)
            raise RouteNotFoundError(rule_id)

        return await self._commit(
            "routes.patch", actor, transform=apply, if_match=if_match, note=f"rule {rule_id}"
        )

    async def delete_route(
        self, rule_id: str, *, actor: str, if_match: str | None = None
    ) -> ConfigBundle:
        def apply(current: Sequence[RouteRule]) -> list[RouteRule]:
            remaining = [rule for rule in current if rule.id != rule_id]
            if len(remaining) == len(current):
                raise RouteNotFoundError(rule_id)
            return remaining

        return await self._commit(
            "routes.delete", actor, transform=apply, if_match=if_match, note=f"rule {rule_id}"
        )

    def validate_routes(self, payload: Any) -> ValidationReport:
        """Validate without writing."""
        try:
            routes = validate_routes(payload)
        except RouteValidationError as e:
            return ValidationReport(valid=False, errors=e.details)
        return ValidationReport(valid=True, routes=len(routes), warnings=route_warnings(routes))

    async def replace_flags(self, payload: Any, *, actor: str) -> ConfigBundle:
        """Replace flags. Not etag-guarded."""
        flags = validate_flags(payload)
        return await self._commit("flags.replace", actor, flags=flags)

    async def invalidate_cache(self, *, actor: str) -> ConfigBundle:
        previous = self._cache.current
        self._cache.invalidate()
        bundle = await self._cache.get(force_reload=True)
        await self._audit.try_append(
            actor,
            "cache.invalidate",
            prev_hash=previous.etag if previous else None,
            new_hash=bundle.etag,
        )
        logger.info("Config cache invalidated", actor=actor, etag=bundle.etag)
        return bundle

    async def list_audit(self, limit: int = 50) -> list[AuditEntry]:
        return await self._audit.list(limit)

    async def export_config(self) -> dict[str, Any]:
        bundle = await self._cache.get()
        return {
            "routes": routes_to_data(bundle.routes),
            "flags": flags_to_data(bundle.flags),
            "metadata": bundle.metadata.model_dump(mode="json", by_alias=True),
            "etag": bundle.etag,
        }

    async def import_config(
        self, payload: Any, *, actor: str, if_match: str | None = None
    ) -> ConfigBundle:
        """Replace routes and, when present, flags from an export document."""
        if not isinstance(payload, dict) or "routes" not in payload:
            raise RouteValidationError(
                "Import payload must be an object with 'routes'",
                [{"loc": "routes", "msg": "field required"}],
            )
        routes = validate_routes(payload["routes"])
        flags = validate_flags(payload["flags"]) if payload.get("flags") is not None else None
        return await self._commit(
            "config.import", actor, routes=routes, flags=flags, if_match=if_match
        )

    async def _commit(
        self,
        action: str,
        actor: str,
        *,
        routes: Sequence[RouteRule] | None = None,
        flags: FlagsConfig | None = None,
        transform: Callable[[Sequence[RouteRule]], list[RouteRule]] | None = None,
        if_match: str | None = None,
        note: str | None = None,
    ) -> ConfigBundle:
        async with self._lock:
            current = await self._cache.get(force_reload=True)

            expected = normalize_etag(if_match)
            if expected is not None and expected != current.etag:
                ADMIN_MUTATIONS.labels(action=action, result="conflict").inc()
                logger.info(
                    "Admin mutation rejected, stale etag",
                    action=action,
                    actor=actor,
                    expected=expected,
                    actual=current.etag,
                )
                raise ConcurrencyConflictError(expected, current.etag)

            if transform is not None:
                routes = transform(current.routes)

            new_routes = routes if routes is not None else current.routes
            new_flags = flags if flags is not None else current.flags
            diff_bytes = _bundle_size(new_routes, new_flags) - _bundle_size(
                current.routes, current.flags
            )

            try:
                if routes is not None:
                    await self._store.put(ROUTES_KEY, encode_routes(routes))
                if flags is not None:
                    await self._store.put(FLAGS_KEY, encode_flags(flags))
                metadata = MetadataRecord(
                    version=current.version + 1,
                    updated_at=utc_timestamp(self._clock),
                    updated_by=actor,
                )
                await self._store.put(METADATA_KEY, encode_model(metadata))
                self._cache.invalidate()
                bundle = await self._cache.get(force_reload=True, allow_stale=False)
                if bundle.version != metadata.version:
                    raise ConfigUnavailableError(
                        f"Reload returned version {bundle.version}, expected {metadata.version}"
                    )
            except Exception as e:
                ADMIN_MUTATIONS.labels(action=action, result="error").inc()
                logger.error("Admin mutation failed", action=action, actor=actor, error=str(e))
                await self._audit.try_append(
                    actor,
                    f"{action}.error",
                    prev_hash=current.etag,
                    note=note,
                    error=str(e),
                )
                raise

        ADMIN_MUTATIONS.labels(action=action, result="ok").inc()
        logger.info(
            "Admin mutation committed",
            action=action,
            actor=actor,
            version=bundle.version,
            etag=bundle.etag,
        )
        await self._audit.try_append(
            actor,
            action,
            prev_hash=current.etag,
            new_hash=bundle.etag,
            diff_bytes=diff_bytes,
            note=note,
        )
        return bundle
