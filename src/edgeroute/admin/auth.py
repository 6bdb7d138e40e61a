"""Admin API access control: bearer token plus optional IP allow-list.

The token may arrive as ``Authorization: Bearer <token>`` or as a
``?token=`` query parameter. The allow-list holds exact addresses or
CIDR networks, IPv4 or IPv6. An empty allow-list admits every address.

Example:
    guard = AdminGuard(token="s3cret", allowed_ips=["10.0.0.0/8"])
    guard.check(presented_token="s3cret", client_ip="10.1.2.3")  # ok
    guard.check(presented_token="nope", client_ip="10.1.2.3")    # AdminAuthError(401)
"""

from __future__ import annotations

import secrets
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from ipaddress import IPv4Address, IPv4Network, IPv6Address, IPv6Network, ip_address, ip_network

import structlog

from edgeroute.errors import AdminAuthError

logger = structlog.get_logger()


@dataclass
class IPAllowList:
    """Exact-address and CIDR allow-list.

    Entries that do not parse are skipped with a warning but still count
    as configured: a list with only invalid entries admits nobody.
    """

    entries: Sequence[str] = field(default_factory=list)

    _networks: list[IPv4Network | IPv6Network] = field(default_factory=list, init=False)
    _exact: set[IPv4Address | IPv6Address] = field(default_factory=set, init=False)
    _configured: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        for entry in self.entries:
            self._add(entry)

    def _add(self, entry: str) -> None:
        entry = entry.strip()
        if not entry:
            return
        self._configured += 1
        try:
            if "/" in entry:
                self._networks.append(ip_network(entry, strict=False))
            else:
                self._exact.add(ip_address(entry))
        except ValueError:
            logger.warning("Ignoring invalid admin allow-list entry", entry=entry)

    @property
    def empty(self) -> bool:
        return self._configured == 0

    def is_allowed(self, ip: str | None) -> bool:
        if self.empty:
            return True
        if not ip:
            return False
        try:
            addr = ip_address(ip.strip())
        except ValueError:
            return False
        if addr in self._exact:
            return True
        return any(addr in network for network in self._networks)


def extract_token(headers: Mapping[str, str], query: Mapping[str, str]) -> str | None:
    """Bearer token from the Authorization header, else the ``token`` query param."""
    auth_header = headers.get("Authorization", "")
    scheme, _, value = auth_header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    token = query.get("token")
    return token or None


class AdminGuard:
    """Checks every admin request before it touches configuration."""

    def __init__(self, token: str | None, allowed_ips: Sequence[str] = ()) -> None:
        self._token = token
        self.allow_list = IPAllowList(list(allowed_ips))

    @property
    def enabled(self) -> bool:
        return bool(self._token)

    def check(self, presented_token: str | None, client_ip: str | None) -> None:
        """Raise ``AdminAuthError`` unless both token and IP are acceptable."""
        self.check_token(presented_token, client_ip)
        self.check_ip(client_ip)

    def check_token(self, presented_token: str | None, client_ip: str | None = None) -> None:
        """Token step alone. With no configured token the admin API is closed to everyone."""
        if not self._token:
            raise AdminAuthError("Admin API is disabled: no admin token configured", status=403)
        if not presented_token:
            raise AdminAuthError("Missing admin token", status=401)
        if not secrets.compare_digest(presented_token.encode(), self._token.encode()):
            logger.warning("Admin token rejected", client_ip=client_ip)
            raise AdminAuthError("Invalid admin token", status=401)

    def check_ip(self, client_ip: str | None) -> None:
        if not self.allow_list.is_allowed(client_ip):
            logger.warning("Admin request from disallowed IP", client_ip=client_ip)
            raise AdminAuthError(f"IP {client_ip} is not allowed", status=403)
