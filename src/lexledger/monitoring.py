"""Monitoring configuration for the ledger."""
from prometheus_client import Counter, Histogram, start_http_server

# Resource metrics
resources_consumed = Counter(
    "lexledger_resources_consumed_total",
    "Total number of resource units consumed",
    ["kind"],
)

resources_granted = Counter(
    "lexledger_resources_granted_total",
    "Total number of bonus resource units granted (negative adjustments excluded)",
    ["kind", "reason"],
)

insufficient_resource = Counter(
    "lexledger_insufficient_resource_total",
    "Total number of consume calls rejected for lack of allowance",
    ["kind"],
)

daily_refills = Counter(
    "lexledger_daily_refills_total",
    "Total number of daily pool refills",
    ["kind"],
)

# Store metrics
transaction_conflicts = Counter(
    "lexledger_transaction_conflicts_total",
    "Total number of optimistic write conflicts detected",
    ["model"],
)

transaction_failures = Counter(
    "lexledger_transaction_failures_total",
    "Total number of transactions surfaced as failed",
    ["error_type"],
)

transaction_duration = Histogram(
    "lexledger_transaction_duration_seconds",
    "Duration of read-modify-write transactions in seconds",
    ["model"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0],
)

# Clock metrics
clock_degraded = Counter(
    "lexledger_clock_degraded_total",
    "Total number of clock readings that fell back to local time",
)

# Security metrics
failed_logins = Counter(
    "lexledger_failed_logins_total",
    "Total number of failed login attempts recorded",
)

device_locks = Counter(
    "lexledger_device_locks_total",
    "Total number of device lockouts started",
)

# Entitlement metrics
premium_activations = Counter(
    "lexledger_premium_activations_total",
    "Total number of premium windows opened",
    ["source"],
)

# Reconciliation metrics
reconciliations = Counter(
    "lexledger_reconciliations_total",
    "Total number of guest reconciliation attempts",
    ["outcome"],
)


def start_monitoring(port: int = 9090) -> None:
    """Start the Prometheus metrics server."""
    start_http_server(port)
