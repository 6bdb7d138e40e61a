"""Edgeroute match criteria.

Each field of a rule's ``match`` block compiles to one criterion object.
Path patterns come in three forms:

- ``/exact/path``: exact equality with the decoded request path
- ``/prefix/*``: prefix match (pattern minus the trailing ``*``)
- ``^/regex/([^/]+)`` or ``re:/regex``: regular expression search

Example:
    pattern = compile_path_pattern("^/casino/([^/?#]+)")
    found = pattern.match("/casino/spins100")
    found.group(1)  # "spins100"
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum

from edgeroute.errors import InvalidRulePatternError

REGEX_PREFIX = "re:"


class CriterionType(Enum):
    """Types of match criteria, in evaluation order."""

    PATH = "path"
    COUNTRY = "countries"
    DEVICE = "devices"
    BOT = "bots"
    QUERY = "query"
    HEADER = "headers"
    REFERRER = "referrer"


@dataclass(frozen=True)
class RequestContext:
    """Classified request as seen by the matcher.

    Header names are lower-cased; query keys keep their case.
    """

    path: str
    country: str | None = None
    device: str = "desktop"
    is_bot: bool = False
    query: Mapping[str, Sequence[str]] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def referrer(self) -> str | None:
        return self.headers.get("referer")


@dataclass(frozen=True)
class PathMatch:
    """Capture groups of a successful path match. Group 0 is the whole match."""

    groups: tuple[str | None, ...]

    def group(self, index: int) -> str | None:
        if 0 <= index < len(self.groups):
            return self.groups[index]
        return None


class PathPattern(ABC):
    """A compiled path pattern."""

    pattern: str

    @abstractmethod
    def match(self, path: str) -> PathMatch | None:
        """Return capture groups if path matches, else None."""
        ...


@dataclass(frozen=True)
class ExactPath(PathPattern):
    """Match the full path exactly.

    Example:
        >>> ExactPath("/health").match("/health") is not None
        True
        >>> ExactPath("/health").match("/health/") is None
        True
    """

    pattern: str

    def match(self, path: str) -> PathMatch | None:
        if path == self.pattern:
            return PathMatch((path,))
        return None


@dataclass(frozen=True)
class PrefixPath(PathPattern):
    """Match by prefix. Group 1 is the remainder after the prefix.

    Example:
        >>> PrefixPath("/go/*").match("/go/acme").group(1)
        'acme'
    """

    pattern: str

    @property
    def prefix(self) -> str:
        return self.pattern[:-1]

    def match(self, path: str) -> PathMatch | None:
        if path.startswith(self.prefix):
            return PathMatch((path, path[len(self.prefix) :]))
        return None


@dataclass(frozen=True)
class RegexPath(PathPattern):
    """Search the path with a regular expression."""

    pattern: str
    compiled: re.Pattern[str] = field(compare=False, repr=False)

    def match(self, path: str) -> PathMatch | None:
        found = self.compiled.search(path)
        if found is None:
            return None
        return PathMatch((found.group(0), *found.groups()))


def is_regex_pattern(pattern: str) -> bool:
    return pattern.startswith("^") or pattern.startswith(REGEX_PREFIX)


def compile_path_pattern(pattern: str, rule_id: str = "") -> PathPattern:
    """Compile one path pattern string.

    Raises:
        InvalidRulePatternError: If a regex pattern does not compile.
    """
    if is_regex_pattern(pattern):
        source = pattern[len(REGEX_PREFIX) :] if pattern.startswith(REGEX_PREFIX) else pattern
        try:
            return RegexPath(pattern=pattern, compiled=re.compile(source))
        except re.error as e:
            raise InvalidRulePatternError(rule_id, pattern, str(e)) from e
    if pattern.endswith("*"):
        return PrefixPath(pattern=pattern)
    return ExactPath(pattern=pattern)


class Criterion(ABC):
    """A non-path condition evaluated against the request context."""

    @property
    @abstractmethod
    def criterion_type(self) -> CriterionType:
        ...

    @abstractmethod
    def matches(self, context: RequestContext) -> bool:
        ...


@dataclass(frozen=True)
class CountryCriterion(Criterion):
    """Country must be known and in the set. Codes are upper-case."""

    countries: frozenset[str]

    @property
    def criterion_type(self) -> CriterionType:
        return CriterionType.COUNTRY

    def matches(self, context: RequestContext) -> bool:
        return context.country is not None and context.country.upper() in self.countries


@dataclass(frozen=True)
class DeviceCriterion(Criterion):
    devices: frozenset[str]

    @property
    def criterion_type(self) -> CriterionType:
        return CriterionType.DEVICE

    def matches(self, context: RequestContext) -> bool:
        return "any" in self.devices or context.device in self.devices


@dataclass(frozen=True)
class BotCriterion(Criterion):
    """``require=True`` admits only bots, ``False`` excludes them."""

    require: bool

    @property
    def criterion_type(self) -> CriterionType:
        return CriterionType.BOT

    def matches(self, context: RequestContext) -> bool:
        return context.is_bot == self.require


@dataclass(frozen=True)
class QueryCriterion(Criterion):
    """Query parameter present with any of the allowed values.

    An empty ``allowed`` tuple only checks presence; ``*`` allows any value.
    """

    name: str
    allowed: tuple[str, ...] = ()

    @property
    def criterion_type(self) -> CriterionType:
        return CriterionType.QUERY

    def matches(self, context: RequestContext) -> bool:
        values = context.query.get(self.name)
        if not values:
            return False
        if not self.allowed or "*" in self.allowed:
            return True
        return any(value in self.allowed for value in values)


@dataclass(frozen=True)
class HeaderCriterion(Criterion):
    """Header present with any of the allowed values (case-insensitive)."""

    name: str
    allowed: tuple[str, ...] = ()

    @property
    def criterion_type(self) -> CriterionType:
        return CriterionType.HEADER

    def matches(self, context: RequestContext) -> bool:
        value = context.headers.get(self.name.lower())
        if value is None:
            return False
        if not self.allowed or "*" in self.allowed:
            return True
        lowered = value.strip().lower()
        return any(lowered == candidate.lower() for candidate in self.allowed)


@dataclass(frozen=True)
class ReferrerCriterion(Criterion):
    """Referer contains any of the substrings (case-insensitive).

    An empty-string entry matches requests without a referrer.
    """

    patterns: tuple[str, ...]

    @property
    def criterion_type(self) -> CriterionType:
        return CriterionType.REFERRER

    def matches(self, context: RequestContext) -> bool:
        referrer = (context.referrer or "").lower()
        for pattern in self.patterns:
            if not pattern:
                if not referrer:
                    return True
            elif pattern.lower() in referrer:
                return True
        return False


def build_criteria(
    countries: Iterable[str] | None = None,
    devices: Iterable[str] | None = None,
    bots: bool | None = None,
    query: Mapping[str, Sequence[str]] | None = None,
    headers: Mapping[str, Sequence[str]] | None = None,
    referrer: Sequence[str] | None = None,
) -> tuple[Criterion, ...]:
    """Build non-path criteria in evaluation order. Empty inputs are skipped."""
    criteria: list[Criterion] = []
    if countries:
        criteria.append(CountryCriterion(frozenset(code.upper() for code in countries)))
    if devices:
        criteria.append(DeviceCriterion(frozenset(devices)))
    if bots is not None:
        criteria.append(BotCriterion(require=bots))
    for name, allowed in (query or {}).items():
        criteria.append(QueryCriterion(name=name, allowed=tuple(allowed)))
    for name, allowed in (headers or {}).items():
        criteria.append(HeaderCriterion(name=name, allowed=tuple(allowed)))
    if referrer:
        criteria.append(ReferrerCriterion(patterns=tuple(referrer)))
    return tuple(criteria)
