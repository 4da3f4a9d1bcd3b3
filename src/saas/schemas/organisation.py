"""Pydantic schemas for organisation API endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.saas.core.tenant import normalize_domain, schema_name_for

if TYPE_CHECKING:
    from src.saas.models.public import Organisation

DOMAIN_PATTERN = r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?(\.[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?)*$"


class OrganisationCreate(BaseModel):
    """Request schema for creating (and provisioning) an organisation."""

    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Unique human-readable organisation name",
        examples=["Acme"],
    )
    domain: str = Field(
        ...,
        min_length=1,
        max_length=253,
        pattern=DOMAIN_PATTERN,
        description="Unique routing domain; requests for this host resolve to the organisation",
        examples=["acme.example.com"],
    )
    sector: str | None = Field(default=None, max_length=100, examples=["Manufacturing"])

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("domain", mode="before")
    @classmethod
    def _normalise_domain(cls, value: object) -> object:
        if isinstance(value, str):
            return normalize_domain(value)
        return value


class OrganisationResponse(BaseModel):
    """Response schema for organisation data."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    domain: str
    sector: str | None = None
    schema_name: str
    provisioning_status: str
    provisioned_at: datetime | None = None
    created_at: datetime | None = None
    deleted_at: datetime | None = None

    @classmethod
    def from_model(cls, org: Organisation) -> OrganisationResponse:
        return cls(
            id=str(org.id),
            name=org.name,
            domain=org.domain,
            sector=org.sector,
            schema_name=schema_name_for(org.id),
            provisioning_status=org.provisioning_status,
            provisioned_at=org.provisioned_at,
            created_at=org.created_at,
            deleted_at=org.deleted_at,
        )


class ProvisioningResponse(BaseModel):
    """Result of a (re-)provisioning run."""

    organisation_id: str
    schema_name: str
    schema_created: bool
    tables_created: list[str]
