"""Edgeroute configuration data model.

Routes, flags, metadata and audit entries are stored as JSON in the
backing key-value store. Field names on the wire are camelCase
(``cacheTtlMs``, ``preserveOriginalQuery``); Python code uses snake_case.

Example route (JSON):
    {
      "id": "casino-ru-mobile",
      "enabled": true,
      "match": {
        "path": "^/casino/([^/?#]+)",
        "countries": ["RU"],
        "devices": ["mobile"],
        "bots": false
      },
      "action": {
        "type": "redirect",
        "target": "https://partner.example/go",
        "query": {"bonus": {"fromPathGroup": 1}}
      }
    }
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Sequence
from ipaddress import ip_address, ip_network
from typing import Annotated, Any, Literal
from urllib.parse import urlsplit

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from edgeroute.errors import RouteValidationError

MIN_CACHE_TTL_MS = 5000
DEFAULT_CACHE_TTL_MS = 60_000
REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})

DeviceClass = Literal["mobile", "desktop", "tablet", "any"]


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


def _as_list(value: Any) -> Any:
    if isinstance(value, str):
        return [value]
    return value


def _values_as_lists(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _as_list(item) for key, item in value.items()}
    return value


class MatchCriteria(_WireModel):
    """Conditions a request must satisfy. Absent fields match anything."""

    path: list[str] | None = None
    countries: list[str] | None = None
    devices: list[DeviceClass] | None = None
    bots: bool | None = None
    query: dict[str, list[str]] | None = None
    headers: dict[str, list[str]] | None = None
    referrer: list[str] | None = None

    @field_validator("path", "referrer", mode="before")
    @classmethod
    def _one_or_many(cls, value: Any) -> Any:
        return _as_list(value)

    @field_validator("query", "headers", mode="before")
    @classmethod
    def _predicate_values(cls, value: Any) -> Any:
        return _values_as_lists(value)

    @field_validator("path")
    @classmethod
    def _non_empty_patterns(cls, value: list[str] | None) -> list[str] | None:
        if value is not None and any(not pattern for pattern in value):
            raise ValueError("path patterns must be non-empty strings")
        return value

    @field_validator("countries")
    @classmethod
    def _upper_countries(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        return [code.strip().upper() for code in value if code.strip()]


class QueryProjection(_WireModel):
    """Derived query value: copy a path capture group or set a literal."""

    from_path_group: int | None = Field(default=None, ge=0)
    literal: str | None = None

    @model_validator(mode="after")
    def _exactly_one_source(self) -> QueryProjection:
        if (self.from_path_group is None) == (self.literal is None):
            raise ValueError("query projection needs exactly one of 'fromPathGroup' or 'literal'")
        return self


class SlugConfig(_WireModel):
    """Where the captured slug goes in the redirect target."""

    mode: Literal["query", "path"] = "query"
    param: str = "brand"
    group: int = Field(default=1, ge=0)
    strip_prefix: str | None = None


class RedirectAction(_WireModel):
    type: Literal["redirect"] = "redirect"
    target: str
    status: int = 302
    slug: SlugConfig | None = None
    query: dict[str, QueryProjection | bool | int | float | str] = Field(default_factory=dict)
    preserve_original_query: bool = False
    extra_query: dict[str, str] = Field(default_factory=dict)
    append_country: bool = False
    append_device: bool = False

    @field_validator("target")
    @classmethod
    def _absolute_target(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("redirect target must not be empty")
        parts = urlsplit(value)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError("redirect target must be an absolute http(s) URL")
        return value

    @field_validator("status")
    @classmethod
    def _redirect_status(cls, value: int) -> int:
        if value not in REDIRECT_STATUSES:
            raise ValueError(f"redirect status must be one of {sorted(REDIRECT_STATUSES)}")
        return value

    def needs_capture(self) -> bool:
        """True if building this redirect depends on a path capture group."""
        if self.slug is not None and not self.slug.strip_prefix:
            return True
        return any(
            isinstance(value, QueryProjection) and value.from_path_group is not None
            for value in self.query.values()
        )


class ResponseAction(_WireModel):
    type: Literal["response"] = "response"
    status: int = Field(default=200, ge=100, le=599)
    headers: dict[str, str] = Field(default_factory=dict)
    body_html: str | None = None
    body_text: str | None = None


Action = Annotated[RedirectAction | ResponseAction, Field(discriminator="type")]


class RouteRule(_WireModel):
    """A single match-criteria-plus-action entry. Order in the list matters."""

    id: str = Field(min_length=1)
    enabled: bool = True
    description: str = ""
    match: MatchCriteria
    action: Action


class FlagsConfig(BaseModel):
    """Feature flags stored alongside the routes."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    cache_ttl_ms: int = DEFAULT_CACHE_TTL_MS
    strict_bots: bool = False
    yandex_bots: list[str] = Field(
        default_factory=lambda: ["yandexbot", "yandeximages", "yandexmobilebot", "yandexdirect"]
    )
    google_bots: list[str] = Field(
        default_factory=lambda: [
            "googlebot",
            "adsbot-google",
            "mediapartners-google",
            "google-inspectiontool",
        ]
    )
    bot_asns: list[int] = Field(
        default_factory=lambda: [15169, 8075, 13238, 32934, 16509, 14618]
    )
    mobile_ua_pattern: str | None = None
    log_sample_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    allowed_admin_ips: list[str] = Field(default_factory=list)
    ui_title: str = "Edgeroute"
    ui_readonly: bool = False

    @field_validator("cache_ttl_ms")
    @classmethod
    def _clamp_ttl(cls, value: int) -> int:
        return max(value, MIN_CACHE_TTL_MS)

    @field_validator("allowed_admin_ips")
    @classmethod
    def _parseable_ips(cls, value: list[str]) -> list[str]:
        entries = [entry.strip() for entry in value if entry.strip()]
        for entry in entries:
            try:
                if "/" in entry:
                    ip_network(entry, strict=False)
                else:
                    ip_address(entry)
            except ValueError as e:
                raise ValueError(f"invalid IP or CIDR entry '{entry}'") from e
        return entries


class MetadataRecord(_WireModel):
    """Provenance written with every mutation."""

    version: int = Field(default=0, ge=0)
    updated_at: str
    updated_by: str


class AuditEntry(BaseModel):
    """Immutable record of a configuration mutation attempt."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    ts: str
    actor: str
    action: str
    prev_hash: str | None = None
    new_hash: str | None = None
    diff_bytes: int | None = None
    note: str | None = None
    error: str | None = None


_ROUTES_ADAPTER = TypeAdapter(list[RouteRule])


def canonical_json(data: Any) -> bytes:
    """Deterministic JSON encoding used for storage and hashing."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode(
        "utf-8"
    )


def routes_to_data(routes: Sequence[RouteRule]) -> list[dict[str, Any]]:
    return [rule.model_dump(mode="json", by_alias=True, exclude_none=True) for rule in routes]


def flags_to_data(flags: FlagsConfig) -> dict[str, Any]:
    return flags.model_dump(mode="json", by_alias=True, exclude_none=True)


def encode_routes(routes: Sequence[RouteRule]) -> bytes:
    return canonical_json(routes_to_data(routes))


def encode_flags(flags: FlagsConfig) -> bytes:
    return canonical_json(flags_to_data(flags))


def encode_model(model: BaseModel) -> bytes:
    return canonical_json(model.model_dump(mode="json", by_alias=True, exclude_none=True))


def compute_etag(routes: Sequence[RouteRule], flags: FlagsConfig, version: int) -> str:
    """Content hash over routes, flags and metadata version.

    Independent of load time: identical inputs always give identical etags.
    """
    payload = {
        "routes": routes_to_data(routes),
        "flags": flags_to_data(flags),
        "version": version,
    }
    return hashlib.sha256(canonical_json(payload)).hexdigest()


def normalize_etag(value: str | None) -> str | None:
    """Strip weak-validator prefix and quotes from an ETag/If-Match value."""
    if value is None:
        return None
    value = value.strip()
    if value.startswith("W/"):
        value = value[2:]
    return value.strip('"') or None


def _details_from(exc: ValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": ".".join(str(part) for part in error["loc"]), "msg": error["msg"]}
        for error in exc.errors()
    ]


def validate_routes(payload: Any) -> list[RouteRule]:
    """Validate a raw routes payload (list of rule dicts).

    Accepts either a bare list or ``{"routes": [...]}``.

    Raises:
        RouteValidationError: If the payload is malformed or ids repeat.
    """
    if isinstance(payload, dict) and "routes" in payload:
        payload = payload["routes"]
    if not isinstance(payload, list):
        raise RouteValidationError(
            "Routes payload must be a list",
            [{"loc": "", "msg": "expected a list of route rules"}],
        )
    try:
        routes = _ROUTES_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        raise RouteValidationError("Invalid routes payload", _details_from(exc)) from exc

    seen: set[str] = set()
    duplicates = []
    for index, rule in enumerate(routes):
        if rule.id in seen:
            duplicates.append({"loc": f"{index}.id", "msg": f"duplicate route id '{rule.id}'"})
        seen.add(rule.id)
    if duplicates:
        raise RouteValidationError("Duplicate route ids", duplicates)
    return routes


def validate_rule(payload: Any) -> RouteRule:
    """Validate a single rule payload."""
    try:
        return RouteRule.model_validate(payload)
    except ValidationError as exc:
        raise RouteValidationError("Invalid route rule", _details_from(exc)) from exc


def validate_flags(payload: Any) -> FlagsConfig:
    """Validate a raw flags payload.

    Raises:
        RouteValidationError: If the payload is malformed.
    """
    if not isinstance(payload, dict):
        raise RouteValidationError(
            "Flags payload must be an object",
            [{"loc": "", "msg": "expected a JSON object"}],
        )
    try:
        return FlagsConfig.model_validate(payload)
    except ValidationError as exc:
        raise RouteValidationError("Invalid flags payload", _details_from(exc)) from exc


def decode_json(raw: bytes) -> Any:
    return json.loads(raw.decode("utf-8"))
