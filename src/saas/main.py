"""FastAPI application factory.

Creates the app with the tenant resolver, logging and metrics middlewares,
CORS, Sentry, lifespan events for database initialization, and the v1 API
router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.saas.api.errors import register_exception_handlers
from src.saas.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.saas.api.middleware.tenant import TenantResolverMiddleware
from src.saas.api.v1.router import router as v1_router
from src.saas.config import get_settings
from src.saas.core.database import close_db, init_db
from src.saas.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.saas.core.redis import close_redis, get_redis_pool
from src.saas.services.tenant_provisioning import SchemaProvisioner
from src.saas.services.tenant_resolution import DatabaseOrganisationLookup, TenantResolver

log = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB and Sentry on startup, close on shutdown."""
    settings = get_settings()
    configure_structlog()
    await init_db()

    # Initialize Sentry if DSN is configured
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    log.info(
        "app.started",
        environment=settings.ENVIRONMENT.value,
        not_found_policy=settings.TENANT_NOT_FOUND_POLICY.value,
        pool_size=settings.DB_POOL_SIZE,
    )

    yield

    await close_redis()
    await close_db()
    log.info("app.stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="SaaS Platform API",
        version="0.1.0",
        description="Multi-tenant organisation platform with schema-per-tenant isolation",
        lifespan=lifespan,
    )

    # Tenancy collaborators, swappable in tests
    redis_client = get_redis_pool() if settings.TENANT_CACHE_TTL_SECONDS > 0 else None
    app.state.tenant_resolver = TenantResolver(
        DatabaseOrganisationLookup(redis_client, ttl=settings.TENANT_CACHE_TTL_SECONDS),
    )
    app.state.provisioner = SchemaProvisioner()

    register_exception_handlers(app)

    # Middleware is added in reverse order (last added = outermost)

    # Tenant middleware (inner -- resolves the tenant and pins its session)
    app.add_middleware(TenantResolverMiddleware)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
