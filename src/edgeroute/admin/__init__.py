"""Edgeroute admin API: authentication, mutation service and HTTP handlers."""

from edgeroute.admin.auth import AdminGuard, IPAllowList, extract_token
from edgeroute.admin.handlers import AdminHandler
from edgeroute.admin.service import AdminService, ValidationReport

__all__ = [
    "AdminGuard",
    "AdminHandler",
    "AdminService",
    "IPAllowList",
    "ValidationReport",
    "extract_token",
]
