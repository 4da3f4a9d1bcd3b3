"""Error taxonomy for tenant resolution, provisioning and organisation lifecycle.

Every error carries an HTTP status and a stable machine-readable
``error_code`` so clients can tell "no tenant indicated" from "tenant
unknown", and "organisation created but not provisioned" from "organisation
creation failed".
"""

from __future__ import annotations

from typing import Any

from fastapi import status


class TenancyError(Exception):
    """Base class for all errors rendered with the standard error body."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "internal_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ── Resolution ──────────────────────────────────────────────────────────────


class MissingTenantError(TenancyError):
    """The request carries neither a tenant-domain header nor a Host."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "tenant_missing"

    def __init__(self, message: str = "Request does not indicate a tenant domain"):
        super().__init__(message)


class TenantNotFoundError(TenancyError):
    """The domain matches no active organisation."""

    status_code = status.HTTP_404_NOT_FOUND
    error_code = "tenant_not_found"

    def __init__(self, domain: str):
        self.domain = domain
        super().__init__(f"No organisation found for domain '{domain}'", {"domain": domain})


class TenantResolutionTimeout(TenancyError):
    """Lookup plus schema pinning exceeded the resolution deadline."""

    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    error_code = "tenant_resolution_timeout"

    def __init__(self, domain: str, timeout: float, stage: str):
        super().__init__(
            f"Tenant resolution for '{domain}' exceeded {timeout}s during {stage}",
            {"domain": domain, "stage": stage},
        )


class SchemaPinError(TenancyError):
    """Setting the search path on a tenant connection failed."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "tenant_schema_unavailable"

    def __init__(self, schema_name: str, reason: str = ""):
        self.schema_name = schema_name
        super().__init__(
            f"Could not pin session to schema '{schema_name}'" + (f": {reason}" if reason else ""),
            {"schema_name": schema_name},
        )


# ── Provisioning ────────────────────────────────────────────────────────────


class ProvisioningError(TenancyError):
    """Tenant schema or table creation failed.

    ``cause`` is one of ``connection``, ``invalid_identifier`` or ``ddl``.
    It is logged and reported in details; callers handle a single kind.
    """

    error_code = "tenant_provisioning_failed"

    def __init__(self, organisation_id: str, cause: str, reason: str = ""):
        self.organisation_id = organisation_id
        self.cause = cause
        super().__init__(
            f"Provisioning failed for organisation {organisation_id} ({cause})" + (f": {reason}" if reason else ""),
            {"organisation_id": organisation_id, "cause": cause},
        )


# ── Organisation lifecycle ──────────────────────────────────────────────────


class OrganisationNotProvisionedError(TenancyError):
    """The organisation row exists but its schema could not be provisioned."""

    status_code = status.HTTP_502_BAD_GATEWAY
    error_code = "organisation_not_provisioned"

    def __init__(self, organisation_id: str, cause: str, provisioning_status: str = "failed"):
        super().__init__(
            f"Provisioning the tenant schema of organisation {organisation_id} failed",
            {"organisation_id": organisation_id, "cause": cause, "provisioning_status": provisioning_status},
        )


class OrganisationCreationError(TenancyError):
    """The organisation row itself could not be created."""

    error_code = "organisation_creation_failed"


class OrganisationConflictError(TenancyError):
    status_code = status.HTTP_409_CONFLICT
    error_code = "organisation_conflict"

    def __init__(self, message: str = "An organisation with this name or domain already exists"):
        super().__init__(message)


class OrganisationNotFoundError(TenancyError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "organisation_not_found"

    def __init__(self, organisation_id: str):
        super().__init__(f"Organisation with id {organisation_id} not found", {"organisation_id": organisation_id})


# ── Tenant users ────────────────────────────────────────────────────────────


class UserConflictError(TenancyError):
    status_code = status.HTTP_409_CONFLICT
    error_code = "user_conflict"

    def __init__(self, email: str):
        super().__init__(f"A user with email '{email}' already exists")


class UserNotFoundError(TenancyError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "user_not_found"

    def __init__(self, user_id: str):
        super().__init__(f"User with id {user_id} not found", {"user_id": user_id})
