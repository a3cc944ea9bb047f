"""
FastAPI application setup with monitoring, rate limiting and error handling.
"""
import logging
import time

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from alset import __version__
from alset.api.dependencies import get_credit_store, limiter
from alset.core.exceptions import (
    alset_exception_handler,
    general_exception_handler,
    AlsetException,
)
from alset.core.monitoring import (
    init_sentry,
    metrics,
    increment_http_requests,
    observe_http_request_duration,
)
from alset.core.monitoring.health_checks import basic_health_check, readiness_check
from alset.core.settings import settings
from alset.credits import ICreditStore

# Setup structured logging
structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelName(settings.log_level.upper())
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)


def create_application() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Alset Property Intelligence API",
        description="Property search with credit-gated smart tier and an auditable credit ledger",
        version=__version__,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # Rate limiting state; the limiter itself is a no-op when disabled
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Add middleware
    setup_middleware(app)

    # Add monitoring
    setup_monitoring(app)

    # Add exception handlers
    setup_exception_handlers(app)

    # Include routers
    setup_routers(app)

    # Setup event handlers
    setup_event_handlers(app)

    return app


def setup_middleware(app: FastAPI):
    """Setup CORS middleware."""
    cors_methods = ["GET", "POST", "OPTIONS"]
    cors_headers = ["Authorization", "Content-Type", "Idempotency-Key", "Accept", "Origin"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=cors_methods,
        allow_headers=cors_headers if settings.is_production else ["*"],
        max_age=3600 if settings.is_production else 600,  # Cache preflight longer in prod
    )
    logger.info("CORS configured", allowed_origins=settings.allowed_origins)


def setup_monitoring(app: FastAPI):
    """Setup monitoring with Prometheus and custom metrics."""

    # Initialize Sentry for error tracking
    init_sentry()

    # Custom middleware for request metrics
    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        start_time = time.time()

        response = await call_next(request)

        duration = time.time() - start_time
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        increment_http_requests(request.method, endpoint, str(response.status_code))
        observe_http_request_duration(request.method, endpoint, duration)

        return response

    instrumentator = Instrumentator(
        should_group_status_codes=False,
        should_ignore_untemplated=True,
        should_respect_env_var=True,
        should_instrument_requests_inprogress=True,
        excluded_handlers=["/metrics", "/healthz", "/readyz"],
        env_var_name="ENABLE_METRICS",
        inprogress_name="alset_requests_inprogress",
        inprogress_labels=True,
    )

    instrumentator.instrument(app)

    @app.get("/metrics")
    async def get_metrics():
        """Expose Prometheus metrics."""
        return metrics.get_metrics_response()


def setup_exception_handlers(app: FastAPI):
    """Setup exception handlers."""

    app.add_exception_handler(AlsetException, alset_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle validation errors with detailed response."""
        logger.info("Validation error",
                    path=request.url.path,
                    method=request.method,
                    errors=str(exc.errors()))

        return JSONResponse(
            status_code=422,
            content={
                "error": {
                    "message": "Input validation failed",
                    "type": "ValidationError",
                    "details": jsonable_encoder(exc.errors()),
                    "status_code": 422,
                }
            }
        )


def setup_routers(app: FastAPI):
    """Setup API routers and service endpoints."""

    from alset.api.routers import credits, search

    app.include_router(search.router, prefix="/api")
    app.include_router(credits.router, prefix="/api")

    @app.get("/healthz")
    async def health_check(request: Request):
        """Basic health check endpoint."""
        logger.debug("Health check requested", remote_addr=get_remote_address(request))
        return await basic_health_check()

    @app.get("/readyz")
    async def readiness_check_endpoint(store: ICreditStore = Depends(get_credit_store)):
        """Readiness check with credit store verification."""
        result = await readiness_check(store)
        return JSONResponse(status_code=200 if result["healthy"] else 503, content=result)

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "message": f"Alset Property Intelligence API v{__version__}",
            "version": __version__,
            "docs": "/docs" if settings.is_development else "Contact admin for API documentation",
            "features": [
                "Tier-gated property search",
                "Credit ledger",
                "Monitoring & Metrics",
                "Structured Logging",
            ],
        }


def setup_event_handlers(app: FastAPI):
    """Setup application event handlers."""

    @app.on_event("startup")
    async def startup_event():
        logger.info("Alset API starting up",
                    environment=settings.environment,
                    credit_store=settings.credit_store_backend)

        for issue in settings.validate_production_config():
            logger.warning("Configuration issue", issue=issue)

        if settings.credit_store_backend == "sql":
            from alset.db.session import create_db_and_tables
            create_db_and_tables()
            logger.info("Credit ledger tables ensured")

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Alset API shutting down")


# Create application instance
app = create_application()
