"""
Prometheus metrics for the chat service.

This module provides:
- HTTP request counter (method, path, status) and latency histogram
- Realtime connection gauge and authentication failure counter
- Realtime event outcome counter (event, result)
- Broadcast fan-out counter (kind)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST


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

realtime_connections = Gauge(
    "realtime_connections",
    "Currently authenticated realtime sessions"
)

# reason: unauthorized, jwt_expired, jwt_not_yet_valid, server_error
realtime_auth_failures_total = Counter(
    "realtime_auth_failures_total",
    "Realtime connections refused during authentication",
    labelnames=["reason"]
)

# result: ok, validation_error, persistence_failure, unauthenticated, error
realtime_events_total = Counter(
    "realtime_events_total",
    "Realtime events handled, by outcome",
    labelnames=["event", "result"]
)

# kind: chatMessage, sendImage, typing
messages_broadcast_total = Counter(
    "messages_broadcast_total",
    "Events delivered to individual sessions by the fan-out engine",
    labelnames=["kind"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path (route template where available)
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


def record_realtime_event(event: str, result: str) -> None:
    """Record the outcome of one inbound realtime event."""
    realtime_events_total.labels(event=event, result=result).inc()


def record_auth_failure(reason: str) -> None:
    realtime_auth_failures_total.labels(reason=reason).inc()


def record_broadcast(kind: str, recipients: int) -> None:
    if recipients:
        messages_broadcast_total.labels(kind=kind).inc(recipients)


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    """
    Get the content type for Prometheus metrics.
    """
    return CONTENT_TYPE_LATEST
