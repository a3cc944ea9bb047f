"""
Prometheus metrics for the Alset API.
Covers HTTP traffic, credit ledger outcomes and credit store latency.
"""

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, CONTENT_TYPE_LATEST, generate_latest
from fastapi import Response
import time
import structlog

logger = structlog.get_logger(__name__)

# Create custom registry for our metrics
registry = CollectorRegistry()

# HTTP Metrics
http_requests_total = Counter(
    'alset_http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=registry
)

http_request_duration = Histogram(
    'alset_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, float('inf')],
    registry=registry
)

# Credit Ledger Metrics
credit_operations = Counter(
    'alset_credit_operations_total',
    'Credit ledger operations by outcome',
    ['operation', 'outcome'],
    registry=registry
)

credits_consumed = Counter(
    'alset_credits_consumed_total',
    'Total credits consumed',
    ['tier'],
    registry=registry
)

credit_store_duration = Histogram(
    'alset_credit_store_duration_seconds',
    'Credit store call duration in seconds',
    ['store', 'operation'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, float('inf')],
    registry=registry
)

credit_store_errors = Counter(
    'alset_credit_store_errors_total',
    'Transient credit store errors',
    ['store', 'operation', 'error_type'],
    registry=registry
)

# Health Check Metrics
health_check_status = Gauge(
    'alset_health_check_status',
    'Health check status (1=healthy, 0=unhealthy)',
    ['service'],
    registry=registry
)


class MetricsCollector:
    """Centralized metrics collection and helper methods."""

    def __init__(self):
        self.registry = registry

    def get_metrics_response(self) -> Response:
        """Return Prometheus metrics as HTTP response."""
        metrics_data = generate_latest(self.registry)
        return Response(
            content=metrics_data,
            media_type=CONTENT_TYPE_LATEST
        )


# Global metrics collector instance
metrics = MetricsCollector()


def increment_http_requests(method: str, endpoint: str, status_code: str):
    """Increment HTTP request counter."""
    http_requests_total.labels(method=method, endpoint=endpoint, status_code=status_code).inc()


def observe_http_request_duration(method: str, endpoint: str, duration_seconds: float):
    """Record HTTP request duration."""
    http_request_duration.labels(method=method, endpoint=endpoint).observe(duration_seconds)


def increment_credit_operation(operation: str, outcome: str):
    """Count a gate operation by outcome (success, replayed, or a failure reason)."""
    credit_operations.labels(operation=operation, outcome=outcome).inc()


def increment_credits_consumed(tier: str, amount: int = 1):
    """Increment credits consumed counter."""
    if amount > 0:
        credits_consumed.labels(tier=tier).inc(amount)


def increment_credit_store_error(store: str, operation: str, error_type: str):
    """Increment transient store error counter."""
    credit_store_errors.labels(store=store, operation=operation, error_type=error_type).inc()
    logger.warning(
        "credit_store_error_recorded",
        store=store,
        operation=operation,
        error_type=error_type
    )


def set_health_check_status(service: str, is_healthy: bool):
    """Set health check status."""
    health_check_status.labels(service=service).set(1 if is_healthy else 0)


class CreditStoreMetricsContext:
    """Context manager recording the duration of one credit store call."""

    def __init__(self, store: str, operation: str):
        self.store = store
        self.operation = operation
        self.start_time = None

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time:
            duration = time.time() - self.start_time
            credit_store_duration.labels(store=self.store, operation=self.operation).observe(duration)
            if exc_type:
                increment_credit_store_error(self.store, self.operation, exc_type.__name__)
        return False
