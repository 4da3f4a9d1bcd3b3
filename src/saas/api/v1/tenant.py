"""Current-tenant endpoint: what the resolver pinned this request to."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from src.saas.api.deps import get_tenant
from src.saas.core.tenant import TenantContext
from src.saas.schemas.tenant import TenantResponse

router = APIRouter(prefix="/api/v1/tenant", tags=["tenant"])


@router.get("", response_model=TenantResponse)
async def current_tenant(tenant: TenantContext = Depends(get_tenant)):
    return TenantResponse(
        organisation_id=tenant.organisation_id,
        organisation_name=tenant.organisation_name,
        domain=tenant.domain,
        schema_name=tenant.schema_name,
        search_path=list(tenant.search_path),
    )
