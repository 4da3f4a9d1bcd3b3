"""Organisation administration endpoints.

These endpoints skip tenant resolution: they operate on the public schema
and are how tenants come into existence.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status

from src.saas.api.deps import get_organisation_service
from src.saas.core.tenant import schema_name_for
from src.saas.schemas.organisation import OrganisationCreate, OrganisationResponse, ProvisioningResponse
from src.saas.schemas.tenant import ErrorResponse
from src.saas.services.organisations import OrganisationService

router = APIRouter(
    prefix="/api/v1/organisations",
    tags=["organisations"],
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)


@router.post("", response_model=OrganisationResponse, status_code=status.HTTP_201_CREATED)
async def create_organisation(
    body: OrganisationCreate,
    service: OrganisationService = Depends(get_organisation_service),
):
    """Create an organisation and provision its isolated tenant schema.

    Responds 502 ``organisation_not_provisioned`` when the row was created
    but provisioning failed; retry with POST /{id}/provision.
    """
    org = await service.create(name=body.name, domain=body.domain, sector=body.sector)
    return OrganisationResponse.from_model(org)


@router.get("", response_model=list[OrganisationResponse])
async def list_organisations(service: OrganisationService = Depends(get_organisation_service)):
    return [OrganisationResponse.from_model(o) for o in await service.list_organisations()]


@router.get("/deleted", response_model=list[OrganisationResponse])
async def list_deleted_organisations(service: OrganisationService = Depends(get_organisation_service)):
    return [OrganisationResponse.from_model(o) for o in await service.list_deleted()]


@router.get("/{organisation_id}", response_model=OrganisationResponse)
async def get_organisation(
    organisation_id: uuid.UUID,
    service: OrganisationService = Depends(get_organisation_service),
):
    return OrganisationResponse.from_model(await service.get(organisation_id))


@router.delete("/{organisation_id}", response_model=OrganisationResponse)
async def delete_organisation(
    organisation_id: uuid.UUID,
    service: OrganisationService = Depends(get_organisation_service),
):
    """Soft-delete: the domain stops resolving, the tenant schema is kept."""
    return OrganisationResponse.from_model(await service.soft_delete(organisation_id))


@router.post("/{organisation_id}/restore", response_model=OrganisationResponse)
async def restore_organisation(
    organisation_id: uuid.UUID,
    service: OrganisationService = Depends(get_organisation_service),
):
    return OrganisationResponse.from_model(await service.restore(organisation_id))


@router.post("/{organisation_id}/provision", response_model=ProvisioningResponse)
async def provision_organisation(
    organisation_id: uuid.UUID,
    service: OrganisationService = Depends(get_organisation_service),
):
    """Re-run provisioning; creates only what is missing."""
    org, result = await service.retry_provisioning(organisation_id)
    return ProvisioningResponse(
        organisation_id=str(org.id),
        schema_name=schema_name_for(org.id),
        schema_created=result.schema_created,
        tables_created=result.tables_created,
    )
