"""Request classification: country, device class and crawler status.

Device precedence:
1. ``Sec-CH-UA-Mobile`` client hint (``?1`` / ``?0``) is authoritative.
2. Tablet tokens (iPad, Tablet) give ``tablet``; desktop OS markers
   (X11, Macintosh without iPhone) give ``desktop``.
3. An explicit ``Mobile`` token gives ``mobile``.
4. Known mobile device substrings give ``mobile``.
5. Otherwise ``desktop``.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass

import structlog

from edgeroute.core.models import FlagsConfig

logger = structlog.get_logger()

CLIENT_HINT_MOBILE = "Sec-CH-UA-Mobile"

DEFAULT_BOT_SIGNATURES: tuple[str, ...] = (
    "feedfetcher-google",
    "google web preview",
    "googleother",
    "bingbot",
    "msnbot",
    "bingpreview",
    "baiduspider",
    "slurp",
    "duckduckbot",
    "mail.ru_bot",
    "applebot",
    "petalbot",
    "facebookexternalhit",
    "twitterbot",
    "discordbot",
    "telegrambot",
    "slackbot",
    "linkedinbot",
)

DEFAULT_MOBILE_UA_PATTERN = (
    r"\b(android|iphone|ipod|windows phone|opera mini|opera mobi|blackberry|bb10|silk/|kindle"
    r"|webos|iemobile|samsungbrowser|miuibrowser|miui|huawei|oppo|oneplus|vivo|realme|poco"
    r"|ucbrowser|crios|fxios|edgios)\b"
)
_DEFAULT_MOBILE_UA_REGEX = re.compile(DEFAULT_MOBILE_UA_PATTERN, re.IGNORECASE)
_TABLET_REGEX = re.compile(r"(iPad|Tablet)", re.IGNORECASE)
_DESKTOP_REGEX = re.compile(r"(X11|Macintosh(?!.*iPhone))", re.IGNORECASE)
_MOBILE_TOKEN_REGEX = re.compile(r"\bMobile\b", re.IGNORECASE)

_UNKNOWN_COUNTRIES = frozenset({"XX", "T1"})
_TRUTHY = frozenset({"1", "true", "yes", "on"})


@dataclass(frozen=True)
class PlatformSignals:
    """Values the hosting edge platform attaches to each request."""

    country: str | None = None
    asn: int | None = None
    verified_bot: bool = False


@dataclass(frozen=True)
class Classification:
    country: str | None
    device: str
    is_bot: bool


def normalize_country(value: str | None) -> str | None:
    """Upper-case ISO code, or None when absent/unknown."""
    if not value:
        return None
    code = value.strip().upper()
    if len(code) != 2 or not code.isalpha() or code in _UNKNOWN_COUNTRIES:
        return None
    return code


def parse_asn(value: str | None) -> int | None:
    if not value:
        return None
    value = value.strip().upper()
    if value.startswith("AS"):
        value = value[2:]
    try:
        return int(value)
    except ValueError:
        return None


def parse_flag(value: str | None) -> bool:
    return bool(value) and value.strip().lower() in _TRUTHY


def classify_device(
    user_agent: str | None,
    client_hint: str | None = None,
    mobile_regex: re.Pattern[str] = _DEFAULT_MOBILE_UA_REGEX,
) -> str:
    """Return ``mobile``, ``tablet`` or ``desktop``."""
    if client_hint:
        hint = client_hint.strip()
        if hint in ("?1", "1"):
            return "mobile"
        if hint in ("?0", "0"):
            return "desktop"

    if not user_agent:
        return "desktop"
    if _TABLET_REGEX.search(user_agent):
        return "tablet"
    if _DESKTOP_REGEX.search(user_agent):
        return "desktop"
    if _MOBILE_TOKEN_REGEX.search(user_agent):
        return "mobile"
    return "mobile" if mobile_regex.search(user_agent) else "desktop"


class RequestClassifier:
    """Classifier bound to one flags snapshot.

    Built once per config bundle so signature lists and the mobile regex
    are compiled at load time, not per request.
    """

    def __init__(self, flags: FlagsConfig) -> None:
        self.strict_bots = flags.strict_bots
        signatures = [*DEFAULT_BOT_SIGNATURES, *flags.google_bots, *flags.yandex_bots]
        self.bot_signatures: tuple[str, ...] = tuple(
            dict.fromkeys(sig.strip().lower() for sig in signatures if sig.strip())
        )
        self.bot_asns: frozenset[int] = frozenset(flags.bot_asns)
        self.mobile_regex = _DEFAULT_MOBILE_UA_REGEX
        if flags.mobile_ua_pattern:
            try:
                self.mobile_regex = re.compile(flags.mobile_ua_pattern, re.IGNORECASE)
            except re.error as e:
                logger.warning(
                    "Invalid mobile user agent pattern, using built-in",
                    pattern=flags.mobile_ua_pattern,
                    error=str(e),
                )

    def classify_device(self, user_agent: str | None, client_hint: str | None = None) -> str:
        return classify_device(user_agent, client_hint, self.mobile_regex)

    def is_bot(
        self,
        user_agent: str | None,
        *,
        platform_bot: bool = False,
        asn: int | None = None,
    ) -> bool:
        if user_agent:
            lowered = user_agent.lower()
            if any(signature in lowered for signature in self.bot_signatures):
                return True
        if platform_bot:
            return True
        return self.strict_bots and asn is not None and asn in self.bot_asns

    def classify(self, headers: Mapping[str, str], signals: PlatformSignals) -> Classification:
        """Classify a request from its headers and platform signals.

        ``headers`` must support case-insensitive lookup or use
        canonical header names.
        """
        user_agent = headers.get("User-Agent")
        return Classification(
            country=normalize_country(signals.country),
            device=self.classify_device(user_agent, headers.get(CLIENT_HINT_MOBILE)),
            is_bot=self.is_bot(
                user_agent,
                platform_bot=signals.verified_bot,
                asn=signals.asn,
            ),
        )
