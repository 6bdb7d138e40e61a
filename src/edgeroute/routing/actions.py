"""Build the outgoing response for a matched rule.

Redirect URL construction order:
1. Configured target URL (its own query string is kept).
2. Slug from the path capture, appended to the target path or set as a
   query parameter.
3. Original query string, when ``preserveOriginalQuery`` is on.
4. Static ``extraQuery`` values.
5. Per-key projections (``fromPathGroup``, ``literal``, raw values).
6. ``country`` and ``device``, when requested.

Redirects always carry ``Cache-Control: no-store``.
"""

from __future__ import annotations

from urllib.parse import parse_qsl, quote, unquote, urlencode, urlsplit, urlunsplit

from aiohttp import web

from edgeroute.core.models import QueryProjection, RedirectAction, ResponseAction
from edgeroute.errors import SlugMissingError
from edgeroute.routing.classifier import Classification
from edgeroute.routing.matcher import MatchResult
from edgeroute.routing.rules import PathMatch

QueryPairs = list[tuple[str, str]]


def sanitize_slug(slug: str) -> str:
    """Percent-decode then re-encode each path segment of the slug."""
    return "/".join(quote(unquote(segment), safe="") for segment in slug.split("/"))


def append_path_segment(base_path: str, slug: str) -> str:
    sanitized = sanitize_slug(slug)
    trimmed = base_path[:-1] if base_path.endswith("/") else base_path
    if trimmed in ("", "/"):
        return f"/{sanitized}"
    return f"{trimmed}/{sanitized}"


def set_query_param(pairs: QueryPairs, key: str, value: str) -> None:
    """Replace the first occurrence of key in place and drop the others, or append."""
    replaced = False
    result: QueryPairs = []
    for existing_key, existing_value in pairs:
        if existing_key != key:
            result.append((existing_key, existing_value))
        elif not replaced:
            result.append((key, value))
            replaced = True
    if not replaced:
        result.append((key, value))
    pairs[:] = result


def extract_slug(action: RedirectAction, path_match: PathMatch, request_path: str) -> str | None:
    slug_config = action.slug
    if slug_config is None:
        return None
    prefix = slug_config.strip_prefix
    if prefix and request_path.startswith(prefix):
        slug = request_path[len(prefix) :].strip("/")
    else:
        slug = path_match.group(slug_config.group)
    return slug or None


def _stringify(value: bool | int | float | str) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_redirect_url(
    action: RedirectAction,
    path_match: PathMatch,
    request_path: str,
    query_string: str = "",
    *,
    country: str | None = None,
    device: str | None = None,
) -> str:
    """Build the redirect location for a matched rule.

    Pure function of its inputs; repeated calls give identical output.

    Raises:
        SlugMissingError: If the action needs a path capture that is empty.
    """
    target = urlsplit(action.target)
    path = target.path
    pairs: QueryPairs = parse_qsl(target.query, keep_blank_values=True)

    if action.slug is not None:
        slug = extract_slug(action, path_match, request_path)
        if not slug:
            raise SlugMissingError(f"No slug captured from {request_path!r}")
        if action.slug.mode == "path":
            path = append_path_segment(path, slug)
        else:
            set_query_param(pairs, action.slug.param, slug)

    if action.preserve_original_query and query_string:
        pairs.extend(parse_qsl(query_string, keep_blank_values=True))

    for key, value in action.extra_query.items():
        set_query_param(pairs, key, value)

    for key, projection in action.query.items():
        if isinstance(projection, QueryProjection):
            if projection.from_path_group is not None:
                captured = path_match.group(projection.from_path_group)
                if not captured:
                    raise SlugMissingError(
                        f"Path group {projection.from_path_group} empty for {request_path!r}"
                    )
                set_query_param(pairs, key, captured)
            else:
                set_query_param(pairs, key, projection.literal or "")
        else:
            set_query_param(pairs, key, _stringify(projection))

    if action.append_country and country:
        set_query_param(pairs, "country", country)
    if action.append_device and device:
        set_query_param(pairs, "device", device)

    return urlunsplit((target.scheme, target.netloc, path, urlencode(pairs), target.fragment))


def redirect_response(location: str, status: int = 302) -> web.Response:
    return web.Response(
        status=status,
        headers={"Location": location, "Cache-Control": "no-store"},
    )


def synthetic_response(action: ResponseAction) -> web.Response:
    """Literal status/headers/body, with Content-Type defaulted from the body kind."""
    headers = dict(action.headers)
    has_content_type = any(name.lower() == "content-type" for name in headers)
    if action.body_html is not None:
        body, content_type = action.body_html, "text/html"
    else:
        body, content_type = action.body_text or "", "text/plain"

    if has_content_type:
        return web.Response(status=action.status, headers=headers, body=body.encode("utf-8"))
    return web.Response(
        status=action.status,
        headers=headers,
        text=body,
        content_type=content_type,
        charset="utf-8",
    )


def execute_action(
    result: MatchResult,
    *,
    request_path: str,
    query_string: str,
    classification: Classification,
) -> web.Response:
    """Turn a match into a response.

    Raises:
        SlugMissingError: Redirect needs a capture that is empty; the caller
            must pass the request through to origin instead.
    """
    action = result.rule.action
    if isinstance(action, ResponseAction):
        return synthetic_response(action)

    location = build_redirect_url(
        action,
        result.path_match,
        request_path,
        query_string,
        country=classification.country,
        device=classification.device,
    )
    return redirect_response(location, action.status)
