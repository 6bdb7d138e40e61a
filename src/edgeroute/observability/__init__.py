from edgeroute.observability.metrics import (
    ADMIN_MUTATIONS,
    CONFIG_LOADS,
    ORIGIN_ERRORS,
    REQUEST_DURATION,
    ROUTER_REQUESTS,
    generate_metrics,
    get_content_type,
)

__all__ = [
    "ADMIN_MUTATIONS",
    "CONFIG_LOADS",
    "ORIGIN_ERRORS",
    "REQUEST_DURATION",
    "ROUTER_REQUESTS",
    "generate_metrics",
    "get_content_type",
]
