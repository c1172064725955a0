"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Booking metrics
booking_requests = Counter(
    'booking_requests_total',
    'Total booking requests',
    ['result']  # confirmed, waitlisted, rejected, conflict
)

booking_latency = Histogram(
    'booking_latency_seconds',
    'Booking request latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

slot_conflicts = Counter(
    'slot_version_conflicts_total',
    'Per-slot compare-and-set failures that forced a retry'
)

booking_cancellations = Counter(
    'booking_cancellations_total',
    'Cancelled bookings',
    ['placement']  # confirmed, waitlisted
)

# Waitlist metrics
waitlist_promotions = Counter(
    'waitlist_promotions_total',
    'Waitlisted bookings promoted to confirmed'
)

# Attendance metrics
attendance_transitions = Counter(
    'attendance_transitions_total',
    'Attendance state changes',
    ['status', 'source']  # attended/no_show/clear, manual/meet_sync/bulk
)

attendance_rejections = Counter(
    'attendance_rejections_total',
    'Attendance marks rejected by the state machine',
    ['code']
)

# Side-effect metrics
intents_dispatched = Counter(
    'side_effect_intents_total',
    'Side-effect intents by outcome',
    ['type', 'result']  # enqueued, enqueue_failed, delivered, retried, dropped
)

# Cache metrics
cache_operations = Counter(
    'attendee_context_cache_total',
    'Attendee context cache lookups',
    ['result']  # hit, miss
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


# Convenience functions for instrumentation
def record_booking_request(result: str):
    """Record booking outcome. Result: confirmed, waitlisted, rejected, conflict"""
    booking_requests.labels(result=result).inc()


def record_attendance(status: str, source: str):
    attendance_transitions.labels(status=status, source=source).inc()


def record_intent(intent_type: str, result: str):
    intents_dispatched.labels(type=intent_type, result=result).inc()


def record_cache_lookup(hit: bool):
    """Record attendee context cache lookup."""
    result = "hit" if hit else "miss"
    cache_operations.labels(result=result).inc()
