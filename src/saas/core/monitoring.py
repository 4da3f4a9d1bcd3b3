"""Prometheus metrics and Sentry integration.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- tenant_resolutions_total / tenant_provisioning_*: tenancy core metrics
- init_sentry(): Initialize Sentry with tenant-aware before_send callback
- get_metrics_response(): FastAPI route handler body for /metrics
"""

from __future__ import annotations

import time

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code", "organisation_id"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "organisation_id"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Tenancy Metrics ──────────────────────────────────────────────────────────

tenant_resolutions_total = Counter(
    "tenant_resolutions_total",
    "Tenant resolution attempts by outcome",
    ["outcome"],  # resolved | public_fallback | tenant_missing | tenant_not_found | ...
)

tenant_resolution_duration_seconds = Histogram(
    "tenant_resolution_duration_seconds",
    "Time spent resolving the tenant and pinning its session",
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0),
)

tenant_provisioning_total = Counter(
    "tenant_provisioning_total",
    "Tenant schema provisioning attempts by outcome",
    ["outcome"],  # success | connection | invalid_identifier | ddl
)

tenant_provisioning_duration_seconds = Histogram(
    "tenant_provisioning_duration_seconds",
    "Tenant schema provisioning duration in seconds",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

db_pool_checked_out = Gauge(
    "db_pool_checked_out",
    "Connections currently checked out of the request pool",
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Reads organisation_id from the request state (set by the tenant resolver,
    which runs inside this middleware) and records request count and duration
    per method/endpoint/organisation.
    Skips the /metrics endpoint itself to avoid self-referential counting.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        endpoint = request.url.path

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        tenant = getattr(request.state, "tenant", None)
        organisation_id = tenant.organisation_id if tenant is not None else "none"

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
            organisation_id=organisation_id,
        ).inc()

        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
            organisation_id=organisation_id,
        ).observe(duration)

        return response


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK with tenant-aware event tagging.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration

    traces_sample_rate = 0.1 if environment == "production" else 1.0

    def before_send(event: dict, hint: dict) -> dict:
        """Add tenant context to Sentry events."""
        from src.saas.core.tenant import get_current_tenant

        try:
            ctx = get_current_tenant()
        except RuntimeError:
            return event
        event.setdefault("tags", {})
        event["tags"]["organisation_id"] = ctx.organisation_id
        event["tags"]["tenant_schema"] = ctx.schema_name
        return event

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        integrations=[
            StarletteIntegration(),
            FastApiIntegration(),
        ],
        before_send=before_send,
    )


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    from src.saas.core.database import _engine

    if _engine is not None:
        db_pool_checked_out.set(_engine.sync_engine.pool.checkedout())

    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
