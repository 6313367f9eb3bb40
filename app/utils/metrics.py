"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
images_requested_total = Counter(
    "images_requested_total",
    "Total number of image generations accepted",
    ["provider"],
)

images_completed_total = Counter(
    "images_completed_total",
    "Total number of completed image generations",
    ["provider"],
)

images_failed_total = Counter(
    "images_failed_total",
    "Total number of failed image generations",
    ["provider", "failure_type"],
)

token_operations_total = Counter(
    "token_operations_total",
    "Total token ledger operations",
    ["operation"],  # purchase, spend, refund, bonus, admin_adjustment
)

balance_rejected_total = Counter(
    "balance_rejected_total",
    "Total spends rejected for insufficient tokens",
)

payments_total = Counter(
    "payments_total",
    "Payment state transitions",
    ["status"],
)

webhook_events_total = Counter(
    "webhook_events_total",
    "Stripe webhook events received",
    ["event_type"],
)

notifications_delivered_total = Counter(
    "notifications_delivered_total",
    "Notification delivery outcomes per channel",
    ["channel", "status"],
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
generation_duration_seconds = Histogram(
    "generation_duration_seconds",
    "Image generation duration",
    ["provider"],
    buckets=[1, 5, 10, 30, 60, 120, 300],
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
