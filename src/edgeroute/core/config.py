"""Process settings with environment variable support.

All settings can be configured via environment variables with the EDGEROUTE_ prefix.
Example: EDGEROUTE_ORIGIN_URL=http://10.0.0.5:8080 sets the origin to forward to.
"""

from __future__ import annotations

import json
import tomllib
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def load_config_from_file(path: str | Path) -> Any:
    """Load a YAML, TOML or JSON document.

    Used both for settings overrides (``--config``) and for route files.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file cannot be decoded or parsed, or has an unknown suffix
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"Config file encoding error in {path}: {e}") from e

    suffix = path.suffix.lower()
    try:
        if suffix in (".yaml", ".yml"):
            return yaml.safe_load(content)
        if suffix == ".toml":
            return tomllib.loads(content)
        if suffix == ".json":
            return json.loads(content)
    except (yaml.YAMLError, tomllib.TOMLDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"Cannot parse {path}: {e}") from e
    raise ValueError(f"Unsupported config format: {path.suffix}")


def settings_overrides_from_file(path: str | Path) -> dict[str, Any]:
    """Settings overrides from a file, optionally nested under an ``edgeroute`` table."""
    document = load_config_from_file(path) or {}
    if isinstance(document, dict) and isinstance(document.get("edgeroute"), dict):
        document = document["edgeroute"]
    if not isinstance(document, dict):
        raise ValueError(f"Settings file {path} must contain a mapping")
    return document


class RouterSettings(BaseSettings):
    """Router process configuration.

    Example:
        settings = get_settings()
        print(settings.origin_url)
        print(settings.cache_ttl_floor_ms)
    """

    model_config = SettingsConfigDict(
        env_prefix="EDGEROUTE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    bind: str = Field(
        default="0.0.0.0:8080",
        description="HTTP bind address (host:port).",
    )
    origin_url: str = Field(
        default="http://127.0.0.1:8000",
        description="Origin base URL that unmatched traffic is forwarded to.",
    )
    origin_timeout: float = Field(
        default=30.0,
        description="Timeout in seconds for origin requests.",
    )
    admin_token: str | None = Field(
        default=None,
        repr=False,
        description="Bearer token required by every admin endpoint. Admin API is closed when unset.",
    )
    admin_prefix: str = Field(
        default="/__admin/api",
        description="Path prefix of the admin API.",
    )
    admin_allowed_ips: list[str] = Field(
        default_factory=list,
        description="IPs or CIDR networks allowed to call the admin API, in addition to the allowedAdminIps flag.",
    )
    store_backend: Literal["memory", "file", "http"] = Field(
        default="file",
        description="Config store backend: 'memory', 'file' or 'http'.",
    )
    store_path: str = Field(
        default="edgeroute-store.json",
        description="Path of the JSON file used by the 'file' store backend.",
    )
    store_url: str | None = Field(
        default=None,
        description="Base URL of the remote key-value service for the 'http' backend.",
    )
    store_token: str | None = Field(
        default=None,
        repr=False,
        description="Bearer token sent to the remote key-value service.",
    )
    store_timeout: float = Field(
        default=5.0,
        description="Timeout in seconds for remote key-value requests.",
    )
    cache_ttl_floor_ms: int = Field(
        default=5000,
        ge=1000,
        description="Lowest config cache TTL allowed regardless of flags (milliseconds).",
    )
    country_header: str = Field(
        default="CF-IPCountry",
        description="Header carrying the platform's ISO country code.",
    )
    asn_header: str = Field(
        default="X-Client-ASN",
        description="Header carrying the client's autonomous system number.",
    )
    bot_signal_header: str = Field(
        default="X-Verified-Bot",
        description="Header set by the platform when it considers the client a bot.",
    )
    client_ip_header: str = Field(
        default="CF-Connecting-IP",
        description="Header carrying the real client IP (falls back to the socket peer).",
    )
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="info",
        description="Log level.",
    )

    def parse_bind(self) -> tuple[str, int]:
        """Split bind address into host and port."""
        if ":" in self.bind:
            host, port = self.bind.rsplit(":", 1)
            return host, int(port)
        return self.bind, 8080


_settings: RouterSettings | None = None


def get_settings(**overrides: Any) -> RouterSettings:
    """Get the process-wide settings instance.

    The instance is created once and cached for the lifetime of the process.
    Overrides only apply when the instance is first created.

    To reload settings (e.g., in tests), call clear_settings() first.
    """
    global _settings
    if _settings is None:
        _settings = RouterSettings(**overrides)
    return _settings


def clear_settings() -> None:
    """Clear the cached settings so the next get_settings() re-reads the environment."""
    global _settings
    _settings = None
