"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, CONTENT_TYPE_LATEST, generate_latest
from fastapi import Response

# Status transitions
booking_transitions = Counter(
    'booking_transitions_total',
    'Booking status transition attempts',
    ['result']  # success, conflict, invalid, forbidden
)

transition_latency = Histogram(
    'booking_transition_latency_seconds',
    'Latency of applying a booking mutation',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

# Payment reconciliation
payment_confirmations = Counter(
    'payment_confirmations_total',
    'Gateway payment confirmations received',
    ['result']  # applied, replayed, ignored, rejected
)

cash_collections = Counter(
    'cash_collections_total',
    'Cash legs marked as collected',
    ['result']  # collected, replayed
)

# Refunds
refund_operations = Counter(
    'refund_operations_total',
    'Refund processor operations',
    ['operation', 'result']  # initiate/complete, success/gateway_error
)

# Store
store_retries = Counter(
    'store_retry_attempts_total',
    'Retries caused by transient booking store errors'
)

# Cache
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_transition(result: str):
    """Record transition attempt. Result: success, conflict, invalid, forbidden"""
    booking_transitions.labels(result=result).inc()


def record_payment_confirmation(result: str):
    payment_confirmations.labels(result=result).inc()


def record_cash_collection(replayed: bool):
    cash_collections.labels(result="replayed" if replayed else "collected").inc()


def record_refund_operation(operation: str, result: str):
    refund_operations.labels(operation=operation, result=result).inc()


def record_store_retry():
    store_retries.inc()


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
