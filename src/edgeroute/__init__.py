"""Edgeroute - geo/device aware traffic router with versioned rule config."""

__version__ = "0.3.0"
