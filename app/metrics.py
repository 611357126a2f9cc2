"""
Prometheus metrics for the notification service.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Submission outcome counter (result)
- Delivery outcome counter (status)
- Search index write failure counter

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# result: accepted, blocked, error
sms_submissions_total = Counter(
    "sms_submissions_total",
    "Total SMS submission outcomes",
    labelnames=["result"]
)

# status: SENT, FAILED, BLACKLISTED, skipped, dropped
sms_deliveries_total = Counter(
    "sms_deliveries_total",
    "Total delivery worker outcomes",
    labelnames=["status"]
)

search_index_failures_total = Counter(
    "search_index_failures_total",
    "Search index writes that failed and were skipped"
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    # Normalize path to avoid high-cardinality labels
    normalized_path = path.split("?")[0]

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_submission_outcome(result: str) -> None:
    sms_submissions_total.labels(result=result).inc()


def record_delivery_outcome(status: str) -> None:
    sms_deliveries_total.labels(status=status).inc()


def record_index_failure() -> None:
    search_index_failures_total.inc()


def get_metrics() -> bytes:
    """Generate Prometheus exposition format metrics."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
