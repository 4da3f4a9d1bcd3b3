"""FastAPI dependency injection for tenant-scoped resources.

These dependencies are used in endpoint function signatures to inject the
resolved tenant, its pinned database session and the organisation services.
"""

from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.saas.core.database import open_public_session
from src.saas.core.exceptions import MissingTenantError
from src.saas.core.tenant import TenantContext
from src.saas.services.organisations import OrganisationRepository, OrganisationService
from src.saas.services.users import UserService


async def get_tenant(request: Request) -> TenantContext:
    """Get the tenant resolved for this request (set by TenantResolverMiddleware)."""
    tenant = getattr(request.state, "tenant", None)
    if tenant is None:
        raise MissingTenantError("This endpoint requires a resolved tenant")
    return tenant


async def get_db(request: Request, tenant: TenantContext = Depends(get_tenant)) -> AsyncSession:
    """Get the request's session pinned to the tenant schema.

    The middleware owns its lifecycle; handlers must not close it.
    """
    return request.state.db


async def get_user_service(db: AsyncSession = Depends(get_db)) -> UserService:
    return UserService(db)


def get_organisation_service(request: Request) -> OrganisationService:
    """Build the organisation service from the app's provisioner and domain cache."""
    return OrganisationService(
        repository=OrganisationRepository(open_public_session),
        provisioner=request.app.state.provisioner,
        domain_cache=request.app.state.tenant_resolver.lookup,
    )
