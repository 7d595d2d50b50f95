"""
Prometheus-based metrics for production monitoring.
Host applications expose them with render_metrics() on their own /metrics route.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST


# Counters
payment_outcomes_total = Counter(
    "payment_outcomes_total",
    "Terminal payment outcomes",
    ["status"],  # successful, failed, cancelled, error
)

payment_completion_dropped_total = Counter(
    "payment_completion_dropped_total",
    "Completion signals that arrived after the attempt was already terminal",
    ["source"],  # callback, poll, dismiss, abort
)

payment_verify_polls_total = Counter(
    "payment_verify_polls_total",
    "Verification polls by result",
    ["result"],  # success, inconclusive, transport_error
)

entitlement_changes_total = Counter(
    "entitlement_changes_total",
    "Entitlement store mutations",
    ["change"],  # activated, reapplied_noop, cancelled
)

access_decisions_total = Counter(
    "access_decisions_total",
    "Access decisions by reason",
    ["reason"],
)

remote_sync_total = Counter(
    "remote_sync_total",
    "Remote ledger sync operations",
    ["operation", "status"],  # push/fetch, success/error/skipped
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
payment_duration_seconds = Histogram(
    "payment_duration_seconds",
    "Time from invocation to terminal outcome",
    ["status"],
    buckets=[1, 5, 10, 30, 60, 120, 180, 300],
)

# Gauges
active_payment_sessions = Gauge(
    "active_payment_sessions",
    "Payment attempts awaiting a terminal outcome",
)


def render_metrics() -> tuple[bytes, str]:
    """Prometheus exposition payload and its content type."""
    return generate_latest(), CONTENT_TYPE_LATEST
