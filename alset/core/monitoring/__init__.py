"""
Monitoring and observability package for the Alset API.
"""

from .sentry_config import init_sentry, capture_credit_context
from .prometheus_metrics import (
    metrics,
    increment_http_requests,
    observe_http_request_duration,
    increment_credit_operation,
    increment_credits_consumed,
    increment_credit_store_error,
    set_health_check_status,
    CreditStoreMetricsContext,
)

__all__ = [
    "init_sentry",
    "capture_credit_context",
    "metrics",
    "increment_http_requests",
    "observe_http_request_duration",
    "increment_credit_operation",
    "increment_credits_consumed",
    "increment_credit_store_error",
    "set_health_check_status",
    "CreditStoreMetricsContext",
]
