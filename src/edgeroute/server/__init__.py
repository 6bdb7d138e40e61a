"""Edgeroute HTTP server."""

from edgeroute.server.app import RouterServer
from edgeroute.server.origin import OriginForwarder

__all__ = ["OriginForwarder", "RouterServer"]
