"""Baked-in configuration written to an empty store on first use."""

from __future__ import annotations

from typing import Any

from edgeroute.core.models import FlagsConfig, RouteRule, validate_routes

DEFAULT_ROUTES: list[dict[str, Any]] = [
    {
        "id": "edge-ping",
        "enabled": True,
        "description": "Synthetic liveness check answered at the edge",
        "match": {"path": "/__edge/ping"},
        "action": {
            "type": "response",
            "status": 200,
            "headers": {"Cache-Control": "no-store"},
            "bodyText": "ok",
        },
    },
    {
        "id": "brand-mobile",
        "enabled": False,
        "description": "Send mobile visitors of /go/<brand> to the partner landing page",
        "match": {
            "path": "^/go/([^/?#]+)",
            "devices": ["mobile"],
            "bots": False,
        },
        "action": {
            "type": "redirect",
            "target": "https://partner.example/landing",
            "status": 302,
            "slug": {"mode": "query", "param": "brand", "group": 1},
            "preserveOriginalQuery": True,
            "appendCountry": True,
            "appendDevice": True,
        },
    },
]


def default_routes() -> list[RouteRule]:
    return validate_routes(DEFAULT_ROUTES)


def default_flags() -> FlagsConfig:
    return FlagsConfig()
