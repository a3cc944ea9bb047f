"""
Health checks for the liveness and readiness endpoints.
"""

import asyncio
import time
from typing import Dict, Any, Optional
import structlog

from alset.core.settings import settings
from alset.credits.store import ICreditStore
from .prometheus_metrics import set_health_check_status

logger = structlog.get_logger(__name__)


class HealthCheckResult:
    """Result of a health check with timing and status information."""

    def __init__(self, service: str, healthy: bool, duration_ms: float,
                 details: Optional[Dict[str, Any]] = None, error: Optional[str] = None):
        self.service = service
        self.healthy = healthy
        self.duration_ms = duration_ms
        self.details = details or {}
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service": self.service,
            "healthy": self.healthy,
            "duration_ms": round(self.duration_ms, 2),
            "details": self.details,
            "error": self.error,
        }


class HealthChecker:
    """Readiness checks for the credit store and the property lookup API."""

    def __init__(self):
        # Health check thresholds (in milliseconds)
        self.thresholds = {
            "credit_store": settings.credit_store_timeout_seconds * 1000,
        }

    async def check_credit_store(self, store: ICreditStore) -> HealthCheckResult:
        """Check that the credit store answers a point read in time."""
        start_time = time.time()
        try:
            reachable = await asyncio.to_thread(store.health_check)
            duration_ms = (time.time() - start_time) * 1000
            healthy = reachable and duration_ms < self.thresholds["credit_store"]
            set_health_check_status("credit_store", healthy)
            return HealthCheckResult(
                service="credit_store",
                healthy=healthy,
                duration_ms=duration_ms,
                details={
                    "backend": store.name,
                    "threshold_ms": self.thresholds["credit_store"],
                },
                error=None if reachable else "credit store unreachable",
            )
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error("Credit store health check raised", error=str(e))
            set_health_check_status("credit_store", False)
            return HealthCheckResult(
                service="credit_store",
                healthy=False,
                duration_ms=duration_ms,
                error=str(e),
            )

    async def check_property_lookup(self) -> HealthCheckResult:
        """Smart searches need a RapidAPI key; a missing key degrades, not fails, readiness."""
        configured = bool(settings.rapidapi_key)
        set_health_check_status("property_lookup", configured)
        return HealthCheckResult(
            service="property_lookup",
            healthy=True,
            duration_ms=0.0,
            details={"configured": configured, "host": settings.rapidapi_host},
        )

    async def check_all(self, store: ICreditStore) -> Dict[str, Any]:
        """Run all checks and return the combined status."""
        start_time = time.time()

        checks = await asyncio.gather(
            self.check_credit_store(store),
            self.check_property_lookup(),
        )

        total_duration = (time.time() - start_time) * 1000
        results = {check.service: check.to_dict() for check in checks}

        return {
            "healthy": all(check.healthy for check in checks),
            "timestamp": time.time(),
            "total_duration_ms": round(total_duration, 2),
            "services": results,
        }


# Global health checker instance
health_checker = HealthChecker()


async def basic_health_check() -> Dict[str, Any]:
    """Basic health check for /healthz endpoint."""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "service": "alset-api",
        "version": settings.app_version,
    }


async def readiness_check(store: ICreditStore) -> Dict[str, Any]:
    """Readiness check for /readyz endpoint."""
    return await health_checker.check_all(store)
