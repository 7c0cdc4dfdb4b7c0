"""
Prometheus metrics for the SMS relay.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Webhook event counter (event_type, result)
- Outbound send counter (result)

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

# Using default buckets: .005, .01, .025, .05, .075, .1, .25, .5, .75, 1.0, 2.5, 5.0, 7.5, 10.0
request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# result: inserted, updated, unmatched, skipped, ignored, invalid_payload, invalid_signature, storage_error
webhook_events_total = Counter(
    "webhook_events_total",
    "Carrier webhook events by type and reconciliation result",
    labelnames=["event_type", "result"]
)

# result: sent, validation_error, gateway_error, storage_error
outbound_sends_total = Counter(
    "outbound_sends_total",
    "Outbound send attempts by outcome",
    labelnames=["result"]
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


def record_webhook_event(event_type: str, result: str) -> None:
    webhook_events_total.labels(event_type=event_type or "unknown", result=result).inc()


def record_outbound_send(result: str) -> None:
    outbound_sends_total.labels(result=result).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
