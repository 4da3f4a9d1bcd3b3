"""Pydantic schemas for tenant-scoped API endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TenantResponse(BaseModel):
    """The tenant resolved for the current request."""

    organisation_id: str
    organisation_name: str
    domain: str
    schema_name: str
    search_path: list[str]


class UserCreate(BaseModel):
    email: str = Field(
        ...,
        min_length=3,
        max_length=255,
        pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$",
        examples=["alice@acme.example.com"],
    )

    @field_validator("email", mode="before")
    @classmethod
    def _lower(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    created_at: datetime | None = None
    deleted_at: datetime | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value: object) -> object:
        return str(value) if value is not None else value


class ErrorBody(BaseModel):
    status_code: int
    error_code: str
    message: str
    details: dict = Field(default_factory=dict)
    path: str | None = None


class ErrorResponse(BaseModel):
    """Standard error envelope returned for every TenancyError."""

    error: ErrorBody
