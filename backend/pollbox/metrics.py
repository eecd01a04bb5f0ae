from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, generate_latest

REQUESTS_TOTAL = Counter(
    "requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
RATE_LIMIT_DECISIONS_TOTAL = Counter(
    "rate_limit_decisions_total",
    "Rate limiter decisions for sensitive operations",
    ["scope", "outcome"],
)
RATE_LIMIT_TRACKED = Gauge(
    "rate_limit_tracked_identifiers",
    "Identifiers currently tracked by a rate limiter",
    ["scope"],
)
POLLS_CREATED_TOTAL = Counter("polls_created_total", "Total polls created")


__all__ = [
    "CONTENT_TYPE_LATEST",
    "REQUESTS_TOTAL",
    "RATE_LIMIT_DECISIONS_TOTAL",
    "RATE_LIMIT_TRACKED",
    "POLLS_CREATED_TOTAL",
    "generate_latest",
]
