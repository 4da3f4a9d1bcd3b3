"""Domain-based tenant resolution middleware.

Resolves the tenant from the X-Tenant-Domain header (auth endpoints that run
before host routing) or the Host header, then for the rest of the request:

- request.state.tenant        TenantContext (None under public fallback)
- request.state.organisation  OrganisationRecord
- request.state.db            AsyncSession pinned to the tenant schema
- get_current_tenant()        the same TenantContext via contextvars

The session is released when the downstream app returns, whatever the
handler did.
"""

from __future__ import annotations

from contextlib import AsyncExitStack

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.saas.api.errors import error_response
from src.saas.core.exceptions import TenancyError
from src.saas.core.tenant import SKIP_TENANT_PATHS, reset_tenant_context, set_tenant_context
from src.saas.services.tenant_resolution import TenantResolver


class TenantResolverMiddleware(BaseHTTPMiddleware):
    """Middleware that pins every tenant-scoped request to its tenant schema.

    The resolver is read from ``app.state.tenant_resolver`` so tests can swap
    it for one built on in-memory doubles. Paths in SKIP_TENANT_PATHS are
    excluded from tenant resolution.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if any(path == skip or path.startswith(skip + "/") for skip in SKIP_TENANT_PATHS):
            return await call_next(request)

        # Already resolved further out in the stack
        if getattr(request.state, "tenant", None) is not None:
            return await call_next(request)

        resolver: TenantResolver = request.app.state.tenant_resolver
        async with AsyncExitStack() as stack:
            try:
                scope = await stack.enter_async_context(resolver.scope(request.headers))
            except TenancyError as exc:
                return error_response(exc, path)

            request.state.tenant = scope.tenant
            request.state.organisation = scope.organisation
            request.state.db = scope.session

            if scope.tenant is None:
                return await call_next(request)

            token = set_tenant_context(scope.tenant)
            try:
                return await call_next(request)
            finally:
                reset_tenant_context(token)
