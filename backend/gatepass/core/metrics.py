"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Payment webhook metrics
webhook_deliveries = Counter(
    'webhook_deliveries_total',
    'Payment webhook deliveries',
    ['outcome']  # created, duplicate, ignored, invalid_signature, malformed, store_unavailable
)

registration_latency = Histogram(
    'registration_create_latency_seconds',
    'Time to turn a completion event into a registration',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

# Gate metrics
checkin_scans = Counter(
    'checkin_scans_total',
    'Credential scans at the gate',
    ['result']  # valid, not_found, forged, malformed, unavailable
)

checkin_admits = Counter(
    'checkin_admits_total',
    'Check-in transitions',
    ['result']  # admitted, already_checked_in, not_found
)

checkin_latency = Histogram(
    'checkin_latency_seconds',
    'Check-in conditional update latency',
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25]
)

# Database metrics
db_operations = Counter(
    'db_operations_total',
    'Total database operations',
    ['operation']  # read, write, conflict
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)

redis_connection_errors = Counter(
    'redis_connection_errors_total',
    'Redis connection errors'
)


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Usage:
        @app.get("/metrics")
        def metrics():
            return metrics_endpoint()
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_webhook(outcome: str):
    """Record webhook delivery outcome."""
    webhook_deliveries.labels(outcome=outcome).inc()


def record_scan(result: str):
    """Record gate scan. Result: valid, not_found, forged, malformed, unavailable"""
    checkin_scans.labels(result=result).inc()


def record_admit(already_checked_in: bool):
    result = "already_checked_in" if already_checked_in else "admitted"
    checkin_admits.labels(result=result).inc()


def record_db_operation(operation: str):
    """Record database operation. Operation: read, write, conflict"""
    db_operations.labels(operation=operation).inc()


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
