"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
ledger_operations_total = Counter(
    "ledger_operations_total",
    "Total credit ledger rows recorded",
    ["kind"],  # PURCHASE, SPEND, REFUND, ADMIN_ADJUSTMENT
)

balance_rejected_total = Counter(
    "balance_rejected_total",
    "Total debits rejected for insufficient credits",
)

unlocks_total = Counter(
    "unlocks_total",
    "Unlock requests by outcome",
    ["outcome"],  # granted, already_unlocked, raced_refunded, insufficient, free
)

purchase_verifications_total = Counter(
    "purchase_verifications_total",
    "On-chain purchase verifications by outcome",
    ["outcome"],  # credited, idempotent, or an error code
)

auth_attempts_total = Counter(
    "auth_attempts_total",
    "Wallet authentication attempts by outcome",
    ["outcome"],
)

balance_drift_total = Counter(
    "balance_drift_total",
    "Accounts whose cached balance drifted from the transaction log",
)

chain_requests_total = Counter(
    "chain_requests_total",
    "Total chain JSON-RPC requests",
    ["method", "status"],
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
chain_request_duration_seconds = Histogram(
    "chain_request_duration_seconds",
    "Chain JSON-RPC request duration",
    ["method"],
    buckets=[0.05, 0.1, 0.5, 1, 2, 5, 10],
)


# Metrics endpoint router
router = APIRouter()


@router.get("/metrics")
def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
