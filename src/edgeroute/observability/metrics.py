from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

ROUTER_REQUESTS = Counter(
    "edgeroute_requests_total",
    "Requests handled by the router",
    ["outcome"],  # redirect/response/passthrough/forward_non_get/unconfigured
)

CONFIG_LOADS = Counter(
    "edgeroute_config_loads_total",
    "Config bundle loads from the store",
    ["result"],  # ok/stale/error
)

ADMIN_MUTATIONS = Counter(
    "edgeroute_admin_mutations_total",
    "Admin configuration mutations",
    ["action", "result"],
)

ORIGIN_ERRORS = Counter(
    "edgeroute_origin_errors_total",
    "Origin forwarding failures",
    ["kind"],
)

REQUEST_DURATION = Histogram(
    "edgeroute_request_duration_seconds",
    "Router request latency",
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)


def generate_metrics() -> bytes:
    return generate_latest()


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST
