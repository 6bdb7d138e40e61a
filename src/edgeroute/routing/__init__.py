"""Edgeroute request routing.

Classifies each request, finds the first matching rule and builds the
redirect or synthetic response for it.

Usage:
    from edgeroute.routing import RequestClassifier, RuleMatcher, RequestContext

    classifier = RequestClassifier(flags)
    matcher = RuleMatcher(routes)
    info = classifier.classify(headers, PlatformSignals(country="RU"))
    result = matcher.match(RequestContext(path="/casino/spins100", country=info.country,
                                          device=info.device, is_bot=info.is_bot))
"""

from edgeroute.routing.actions import (
    build_redirect_url,
    execute_action,
    redirect_response,
    sanitize_slug,
    synthetic_response,
)
from edgeroute.routing.classifier import (
    Classification,
    PlatformSignals,
    RequestClassifier,
    classify_device,
    normalize_country,
)
from edgeroute.routing.matcher import (
    CompiledRoute,
    MatchResult,
    RuleMatcher,
    compile_route,
    match,
)
from edgeroute.routing.rules import (
    CriterionType,
    PathMatch,
    RequestContext,
    compile_path_pattern,
)

__all__ = [
    # Classification
    "Classification",
    "PlatformSignals",
    "RequestClassifier",
    "classify_device",
    "normalize_country",
    # Matching
    "CompiledRoute",
    "CriterionType",
    "MatchResult",
    "PathMatch",
    "RequestContext",
    "RuleMatcher",
    "compile_path_pattern",
    "compile_route",
    "match",
    # Actions
    "build_redirect_url",
    "execute_action",
    "redirect_response",
    "sanitize_slug",
    "synthetic_response",
]
