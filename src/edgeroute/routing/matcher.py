"""Edgeroute rule matching engine.

Evaluates rules in list order and returns the first enabled rule whose
every present criterion holds. Criteria short-circuit in the order path,
countries, devices, bots, query, headers, referrer.

Example:
    matcher = RuleMatcher(routes)
    result = matcher.match(RequestContext(path="/casino/spins100", country="RU",
                                          device="mobile", is_bot=False))
    if result:
        result.rule.id, result.group(1)
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import structlog

from edgeroute.core.models import RouteRule
from edgeroute.errors import InvalidRulePatternError
from edgeroute.routing.rules import (
    Criterion,
    PathMatch,
    PathPattern,
    RequestContext,
    build_criteria,
    compile_path_pattern,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class CompiledRoute:
    """A rule with its path patterns and criteria compiled.

    A rule whose regex failed to compile keeps ``error`` set and never matches.
    """

    rule: RouteRule
    path_patterns: tuple[PathPattern, ...] = ()
    criteria: tuple[Criterion, ...] = ()
    error: str | None = None

    @property
    def id(self) -> str:
        return self.rule.id

    def evaluate(self, context: RequestContext) -> PathMatch | None:
        """Return path captures if every criterion holds, else None."""
        if not self.rule.enabled or self.error is not None:
            return None

        if self.path_patterns:
            path_match = None
            for pattern in self.path_patterns:
                path_match = pattern.match(context.path)
                if path_match is not None:
                    break
            if path_match is None:
                return None
        else:
            path_match = PathMatch((context.path,))

        for criterion in self.criteria:
            if not criterion.matches(context):
                return None
        return path_match


def compile_route(rule: RouteRule) -> CompiledRoute:
    """Compile one rule. Invalid regexes disable the rule instead of raising."""
    criteria = rule.match
    try:
        patterns = tuple(
            compile_path_pattern(pattern, rule.id) for pattern in (criteria.path or [])
        )
    except InvalidRulePatternError as e:
        logger.warning(
            "Invalid rule pattern, rule disabled",
            rule_id=e.rule_id,
            pattern=e.pattern,
            error=e.reason,
        )
        return CompiledRoute(rule=rule, error=e.reason)

    return CompiledRoute(
        rule=rule,
        path_patterns=patterns,
        criteria=build_criteria(
            countries=criteria.countries,
            devices=criteria.devices,
            bots=criteria.bots,
            query=criteria.query,
            headers=criteria.headers,
            referrer=criteria.referrer,
        ),
    )


@dataclass(frozen=True)
class MatchResult:
    """The winning rule plus its path captures."""

    rule: RouteRule
    path_match: PathMatch

    def group(self, index: int) -> str | None:
        return self.path_match.group(index)


class RuleMatcher:
    """Ordered, immutable set of compiled rules."""

    def __init__(self, routes: Sequence[RouteRule]) -> None:
        self._compiled: tuple[CompiledRoute, ...] = tuple(compile_route(rule) for rule in routes)

    @property
    def routes(self) -> tuple[CompiledRoute, ...]:
        return self._compiled

    @property
    def errors(self) -> dict[str, str]:
        """Rule id -> compile error for rules that can never match."""
        return {route.id: route.error for route in self._compiled if route.error is not None}

    def match(self, context: RequestContext) -> MatchResult | None:
        """Find the first matching rule, or None to pass through to origin."""
        for route in self._compiled:
            path_match = route.evaluate(context)
            if path_match is not None:
                return MatchResult(rule=route.rule, path_match=path_match)
        return None

    def __len__(self) -> int:
        return len(self._compiled)

    def __bool__(self) -> bool:
        return bool(self._compiled)


def match(
    rules: Sequence[RouteRule],
    path: str,
    country: str | None,
    device: str,
    is_bot: bool,
) -> RouteRule | None:
    """Return the first rule matching path and classification, or None."""
    result = RuleMatcher(rules).match(
        RequestContext(path=path, country=country, device=device, is_bot=is_bot)
    )
    return result.rule if result else None
