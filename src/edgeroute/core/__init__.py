"""Core."""

from .config import (
    RouterSettings,
    clear_settings,
    get_settings,
    load_config_from_file,
    settings_overrides_from_file,
)
from .models import (
    AuditEntry,
    FlagsConfig,
    MetadataRecord,
    RedirectAction,
    ResponseAction,
    RouteRule,
    compute_etag,
    normalize_etag,
    validate_flags,
    validate_routes,
)

__all__ = [
    "AuditEntry",
    "FlagsConfig",
    "MetadataRecord",
    "RedirectAction",
    "ResponseAction",
    "RouteRule",
    "RouterSettings",
    "clear_settings",
    "compute_etag",
    "get_settings",
    "load_config_from_file",
    "settings_overrides_from_file",
    "normalize_etag",
    "validate_flags",
    "validate_routes",
]
