"""Process-wide cache of the routing configuration.

The bundle (routes, flags, metadata and their etag) is loaded from the
store at most once per TTL window. Within a window every request reuses
the same compiled matcher and classifier without any store I/O.

On first use an empty store is seeded with the built-in defaults. That
bootstrap runs once per process even when many requests arrive together.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime

import structlog

from edgeroute.core.audit import AuditLogWriter
from edgeroute.core.defaults import default_flags, default_routes
from edgeroute.core.models import (
    MIN_CACHE_TTL_MS,
    FlagsConfig,
    MetadataRecord,
    RouteRule,
    compute_etag,
    decode_json,
    encode_flags,
    encode_model,
    encode_routes,
    validate_flags,
    validate_routes,
)
from edgeroute.errors import ConfigUnavailableError, RouteValidationError, StoreError
from edgeroute.observability.metrics import CONFIG_LOADS
from edgeroute.routing.classifier import RequestClassifier
from edgeroute.routing.matcher import RuleMatcher
from edgeroute.store.base import FLAGS_KEY, METADATA_KEY, ROUTES_KEY, ConfigStore

logger = structlog.get_logger()

BOOTSTRAP_ACTOR = "system"


def utc_timestamp(clock: Callable[[], float] = time.time) -> str:
    return datetime.fromtimestamp(clock(), UTC).isoformat()


@dataclass(frozen=True)
class ConfigBundle:
    """Immutable snapshot of routes, flags and metadata."""

    routes: tuple[RouteRule, ...]
    flags: FlagsConfig
    metadata: MetadataRecord
    etag: str
    loaded_at: float
    expires_at: float
    matcher: RuleMatcher = field(compare=False, repr=False)
    classifier: RequestClassifier = field(compare=False, repr=False)

    @classmethod
    def build(
        cls,
        routes: Sequence[RouteRule],
        flags: FlagsConfig,
        metadata: MetadataRecord,
        *,
        now: float,
        ttl_floor_ms: int = MIN_CACHE_TTL_MS,
    ) -> ConfigBundle:
        ttl_ms = max(flags.cache_ttl_ms, ttl_floor_ms)
        return cls(
            routes=tuple(routes),
            flags=flags,
            metadata=metadata,
            etag=compute_etag(routes, flags, metadata.version),
            loaded_at=now,
            expires_at=now + ttl_ms / 1000,
            matcher=RuleMatcher(routes),
            classifier=RequestClassifier(flags),
        )

    @property
    def version(self) -> int:
        return self.metadata.version

    @property
    def rule_errors(self) -> dict[str, str]:
        return self.matcher.errors

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


class ConfigCache:
    """TTL cache in front of a ``ConfigStore``.

    Args:
        store: Backing key-value store.
        audit: Audit writer used to record the bootstrap outcome.
        clock: Seconds-since-epoch source; injectable for tests.
        ttl_floor_ms: Lowest TTL honoured regardless of ``cacheTtlMs``.
    """

    def __init__(
        self,
        store: ConfigStore,
        *,
        audit: AuditLogWriter | None = None,
        clock: Callable[[], float] = time.time,
        ttl_floor_ms: int = MIN_CACHE_TTL_MS,
        initial_routes: Sequence[RouteRule] | None = None,
        initial_flags: FlagsConfig | None = None,
    ) -> None:
        self._store = store
        self._audit = audit
        self._clock = clock
        self._ttl_floor_ms = max(ttl_floor_ms, MIN_CACHE_TTL_MS)
        self._initial_routes = initial_routes
        self._initial_flags = initial_flags

        self._bundle: ConfigBundle | None = None
        self._last_known: ConfigBundle | None = None
        self._bootstrapped = False
        self._bootstrap_task: asyncio.Task[None] | None = None
        self.loads = 0

    @property
    def store(self) -> ConfigStore:
        return self._store

    @property
    def current(self) -> ConfigBundle | None:
        """The held bundle, fresh or not. Never touches the store."""
        return self._bundle

    async def get(self, force_reload: bool = False, allow_stale: bool = True) -> ConfigBundle:
        """Return the current bundle, reloading it when expired.

        With ``allow_stale=False`` a failed reload raises instead of
        serving the last known bundle.

        Raises:
            ConfigUnavailableError: If nothing could be loaded and no
                earlier bundle exists to fall back to, or the reload
                failed and ``allow_stale`` is off.
        """
        bundle = self._bundle
        if not force_reload and bundle is not None and bundle.is_fresh(self._clock()):
            return bundle

        await self.ensure_bootstrapped()
        return await self._reload(allow_stale)

    def invalidate(self) -> None:
        """Drop the held bundle so the next ``get`` reloads from the store."""
        self._bundle = None

    async def ensure_bootstrapped(self) -> None:
        """Seed an empty store with defaults, once per process.

        Concurrent callers share one in-flight bootstrap. A failed
        bootstrap is forgotten so a later call can retry.
        """
        if self._bootstrapped:
            return
        if self._bootstrap_task is None:
            self._bootstrap_task = asyncio.ensure_future(self._bootstrap())
        task = self._bootstrap_task
        try:
            await asyncio.shield(task)
        except Exception:
            if self._bootstrap_task is task and task.done():
                self._bootstrap_task = None
            raise
        self._bootstrapped = True

    async def _bootstrap(self) -> None:
        try:
            if await self._store.get(METADATA_KEY) is not None:
                return

            routes = (
                list(self._initial_routes)
                if self._initial_routes is not None
                else default_routes()
            )
            flags = self._initial_flags or default_flags()
            metadata = MetadataRecord(
                version=1,
                updated_at=utc_timestamp(self._clock),
                updated_by=BOOTSTRAP_ACTOR,
            )
            await self._store.put(ROUTES_KEY, encode_routes(routes))
            await self._store.put(FLAGS_KEY, encode_flags(flags))
            await self._store.put(METADATA_KEY, encode_model(metadata))
        except Exception as e:
            logger.error("Config bootstrap failed", error=str(e))
            if self._audit is not None:
                await self._audit.try_append(
                    BOOTSTRAP_ACTOR, "config.bootstrap.error", error=str(e)
                )
            if isinstance(e, StoreError):
                raise ConfigUnavailableError(f"Bootstrap failed: {e}") from e
            raise

        logger.info("Config store bootstrapped with defaults", routes=len(routes))
        if self._audit is not None:
            await self._audit.try_append(
                BOOTSTRAP_ACTOR,
                "config.bootstrap",
                new_hash=compute_etag(routes, flags, metadata.version),
                note=f"seeded {len(routes)} default routes",
            )

    async def _reload(self, allow_stale: bool = True) -> ConfigBundle:
        now = self._clock()
        try:
            raw_routes, raw_flags, raw_metadata = await asyncio.gather(
                self._store.get(ROUTES_KEY),
                self._store.get(FLAGS_KEY),
                self._store.get(METADATA_KEY),
            )
            if raw_routes is None or raw_metadata is None:
                raise ConfigUnavailableError("Routes or metadata record missing from store")
            routes = validate_routes(decode_json(raw_routes))
            flags = (
                validate_flags(decode_json(raw_flags)) if raw_flags is not None else FlagsConfig()
            )
            metadata = MetadataRecord.model_validate(decode_json(raw_metadata))
        except (StoreError, ConfigUnavailableError, RouteValidationError, ValueError) as e:
            if not allow_stale:
                CONFIG_LOADS.labels(result="error").inc()
                logger.error("Config reload failed", error=str(e))
                raise ConfigUnavailableError(f"Config reload failed: {e}") from e
            return self._fall_back(e, now)

        bundle = ConfigBundle.build(
            routes, flags, metadata, now=now, ttl_floor_ms=self._ttl_floor_ms
        )
        self._bundle = bundle
        self._last_known = bundle
        self.loads += 1
        CONFIG_LOADS.labels(result="ok").inc()

        if bundle.rule_errors:
            logger.warning("Config loaded with disabled rules", errors=bundle.rule_errors)
        logger.debug(
            "Config loaded",
            etag=bundle.etag,
            version=metadata.version,
            routes=len(routes),
        )
        return bundle

    def _fall_back(self, error: Exception, now: float) -> ConfigBundle:
        stale = self._last_known
        if stale is None:
            CONFIG_LOADS.labels(result="error").inc()
            logger.error("Config load failed, no bundle to fall back to", error=str(error))
            if isinstance(error, ConfigUnavailableError):
                raise error
            raise ConfigUnavailableError(f"Config load failed: {error}") from error

        # Serve the stale bundle for one more floor interval.
        refreshed = replace(stale, expires_at=now + self._ttl_floor_ms / 1000)
        self._bundle = refreshed
        self._last_known = refreshed
        CONFIG_LOADS.labels(result="stale").inc()
        logger.warning("Config load failed, serving stale bundle", error=str(error), etag=stale.etag)
        return refreshed
