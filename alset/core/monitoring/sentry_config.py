"""
Sentry integration for the Alset API.
Provides exception tracking and performance monitoring.
"""

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
import structlog

from alset.core.settings import settings

logger = structlog.get_logger(__name__)

_IGNORED_TRANSACTIONS = ["/healthz", "/readyz", "/metrics"]


def init_sentry() -> bool:
    """Initialize Sentry when a DSN is configured. Returns whether it was initialized."""
    if not settings.sentry_dsn:
        logger.info("Sentry DSN not configured, skipping Sentry initialization")
        return False

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        release=settings.release_version,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        profiles_sample_rate=settings.sentry_profiles_sample_rate,
        attach_stacktrace=True,
        send_default_pii=False,
        max_breadcrumbs=50,
        integrations=[
            FastApiIntegration(
                failed_request_status_codes={*range(500, 600)},
            ),
            SqlalchemyIntegration(),
            LoggingIntegration(level=None, event_level=None),
        ],
        before_send=_before_send_filter,
        before_send_transaction=_before_send_transaction_filter,
    )

    sentry_sdk.set_tag("service", "alset-api")

    logger.info(
        "sentry_initialized",
        environment=settings.environment,
        traces_sample_rate=settings.sentry_traces_sample_rate,
    )
    return True


def _before_send_filter(event, hint):
    """Filter events before sending to Sentry."""
    headers = event.get("request", {}).get("headers", {})
    if "authorization" in headers:
        headers["authorization"] = "[Filtered]"

    if event.get("transaction") in _IGNORED_TRANSACTIONS:
        return None

    return event


def _before_send_transaction_filter(event, hint):
    """Drop health and metrics transactions."""
    if event.get("transaction") in _IGNORED_TRANSACTIONS:
        return None
    return event


def capture_credit_context(account_id: str, reference_id: str = None, tier: str = None):
    """Tag the current Sentry scope with the ledger operation being performed."""
    scope = sentry_sdk.get_current_scope()
    scope.set_user({"id": account_id})
    if reference_id:
        scope.set_tag("credit_reference_id", reference_id)
    if tier:
        scope.set_tag("search_tier", tier)
