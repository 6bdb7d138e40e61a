"""Exception types shared across the router, cache and admin layers."""

from __future__ import annotations

from typing import Any


class EdgeRouteError(Exception):
    """Base class for all edgeroute errors."""


class StoreError(EdgeRouteError):
    """The backing key-value store could not be read or written."""


class ConfigUnavailableError(EdgeRouteError):
    """No usable configuration bundle exists (store empty or unreachable)."""


class InvalidRulePatternError(EdgeRouteError):
    """A rule's path pattern is not a valid regular expression."""

    def __init__(self, rule_id: str, pattern: str, reason: str) -> None:
        super().__init__(f"Invalid path pattern in rule '{rule_id}': {reason}")
        self.rule_id = rule_id
        self.pattern = pattern
        self.reason = reason


class RouteValidationError(EdgeRouteError):
    """An admin payload failed structural validation."""

    def __init__(self, message: str, details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class RouteNotFoundError(EdgeRouteError):
    """No rule with the requested id exists."""

    def __init__(self, rule_id: str) -> None:
        super().__init__(f"Route not found: {rule_id}")
        self.rule_id = rule_id


class ConcurrencyConflictError(EdgeRouteError):
    """The caller's If-Match etag does not match the current bundle."""

    def __init__(self, expected: str, actual: str) -> None:
        super().__init__("Routes were modified concurrently; reload and retry")
        self.expected = expected
        self.actual = actual


class AdminAuthError(EdgeRouteError):
    """Admin request rejected by token or IP allow-list checks."""

    def __init__(self, reason: str, status: int = 401) -> None:
        super().__init__(reason)
        self.reason = reason
        self.status = status


class SlugMissingError(EdgeRouteError):
    """A redirect needs a path capture but the capture was empty."""
