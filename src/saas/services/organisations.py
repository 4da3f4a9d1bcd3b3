"""Organisation lifecycle -- create, provision, soft-delete, restore.

Creation is two-phase: the organisation row is committed as ``pending``,
then the tenant schema is provisioned and the row is flipped to ``active``
(or ``failed``). Only ``active`` organisations are resolvable by the tenant
resolver, so a request can never be routed to a schema that does not exist.

OrganisationRepository uses the session_factory callable pattern so the
service can be tested with an in-memory repository double.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timezone
from typing import Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.saas.core.exceptions import (
    OrganisationConflictError,
    OrganisationCreationError,
    OrganisationNotFoundError,
    OrganisationNotProvisionedError,
    ProvisioningError,
)
from src.saas.models.public import Organisation, ProvisioningStatus
from src.saas.services.tenant_provisioning import ProvisioningResult

logger = structlog.get_logger(__name__)


class Provisioner(Protocol):
    async def provision(self, organisation_id: object) -> ProvisioningResult: ...


class DomainCache(Protocol):
    async def invalidate(self, domain: str) -> None: ...


# ── Repository ──────────────────────────────────────────────────────────────


class OrganisationRepository:
    """Async CRUD for public.organisations.

    Every method opens its own short-lived session; returned models are
    detached (``expire_on_commit=False``) and safe to read after return.
    """

    def __init__(self, session_factory: Callable[[], AbstractAsyncContextManager[AsyncSession]]):
        self._session_factory = session_factory

    async def create(self, name: str, domain: str, sector: str | None = None) -> Organisation:
        org = Organisation(
            id=uuid.uuid4(),
            name=name,
            domain=domain,
            sector=sector,
            provisioning_status=ProvisioningStatus.pending.value,
        )
        try:
            async with self._session_factory() as session:
                session.add(org)
                await session.commit()
                await session.refresh(org)
        except IntegrityError as exc:
            raise OrganisationConflictError() from exc
        except SQLAlchemyError as exc:
            logger.error("organisation.create_failed", name=name, domain=domain, error=str(exc))
            raise OrganisationCreationError(f"Organisation '{name}' could not be created") from exc
        return org

    async def get(self, organisation_id: uuid.UUID, *, include_deleted: bool = False) -> Organisation | None:
        stmt = select(Organisation).where(Organisation.id == organisation_id)
        if not include_deleted:
            stmt = stmt.where(Organisation.deleted_at.is_(None))
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def find_all(self, *, deleted: bool = False) -> list[Organisation]:
        if deleted:
            stmt = select(Organisation).where(Organisation.deleted_at.is_not(None))
        else:
            stmt = select(Organisation).where(Organisation.deleted_at.is_(None))
        async with self._session_factory() as session:
            result = await session.execute(stmt.order_by(Organisation.name))
            return list(result.scalars().all())

    async def update(self, organisation_id: uuid.UUID, **values: object) -> Organisation | None:
        async with self._session_factory() as session:
            org = await session.get(Organisation, organisation_id)
            if org is None:
                return None
            for key, value in values.items():
                setattr(org, key, value)
            await session.commit()
            await session.refresh(org)
            return org


# ── Service ─────────────────────────────────────────────────────────────────


class OrganisationService:
    """Organisation lifecycle on top of the repository and the schema provisioner."""

    def __init__(
        self,
        repository: OrganisationRepository,
        provisioner: Provisioner,
        domain_cache: DomainCache | None = None,
    ):
        self.repository = repository
        self.provisioner = provisioner
        self.domain_cache = domain_cache

    async def create(self, name: str, domain: str, sector: str | None = None) -> Organisation:
        """Create an organisation and provision its tenant schema.

        Raises:
            OrganisationConflictError: name or domain already taken.
            OrganisationCreationError: the row could not be created.
            OrganisationNotProvisionedError: the row exists (``failed``) but
                its schema could not be provisioned.
        """
        org = await self.repository.create(name=name, domain=domain, sector=sector)
        logger.info("organisation.created", organisation_id=str(org.id), domain=domain)
        return await self._provision(org)

    async def retry_provisioning(self, organisation_id: uuid.UUID) -> tuple[Organisation, ProvisioningResult]:
        """Re-run provisioning for an existing organisation (idempotent)."""
        org = await self.get(organisation_id)
        result = await self._run_provisioner(org)
        if org.provisioning_status != ProvisioningStatus.active.value:
            org = await self._mark(org, ProvisioningStatus.active, provisioned_at=datetime.now(timezone.utc))
        return org, result

    async def get(self, organisation_id: uuid.UUID) -> Organisation:
        org = await self.repository.get(organisation_id)
        if org is None:
            raise OrganisationNotFoundError(str(organisation_id))
        return org

    async def list_organisations(self) -> list[Organisation]:
        return await self.repository.find_all()

    async def list_deleted(self) -> list[Organisation]:
        return await self.repository.find_all(deleted=True)

    async def soft_delete(self, organisation_id: uuid.UUID) -> Organisation:
        """Mark the organisation deleted; its domain stops resolving. The schema is kept."""
        await self.get(organisation_id)
        org = await self.repository.update(organisation_id, deleted_at=datetime.now(timezone.utc))
        await self._invalidate(org.domain)
        logger.info("organisation.deleted", organisation_id=str(organisation_id))
        return org

    async def restore(self, organisation_id: uuid.UUID) -> Organisation:
        org = await self.repository.get(organisation_id, include_deleted=True)
        if org is None or org.deleted_at is None:
            raise OrganisationNotFoundError(str(organisation_id))
        org = await self.repository.update(organisation_id, deleted_at=None)
        await self._invalidate(org.domain)
        logger.info("organisation.restored", organisation_id=str(organisation_id))
        return org

    async def _provision(self, org: Organisation) -> Organisation:
        await self._run_provisioner(org)
        return await self._mark(org, ProvisioningStatus.active, provisioned_at=datetime.now(timezone.utc))

    async def _run_provisioner(self, org: Organisation) -> ProvisioningResult:
        """Run the provisioner; a failure only demotes organisations that are not yet active.

        An active organisation already has its full schema, so a failed
        re-run (e.g. a connection blip) leaves it active and resolvable.
        """
        status = org.provisioning_status
        try:
            return await self.provisioner.provision(org.id)
        except ProvisioningError as exc:
            if status != ProvisioningStatus.active.value:
                try:
                    await self._mark(org, ProvisioningStatus.failed)
                    status = ProvisioningStatus.failed.value
                except SQLAlchemyError:
                    logger.error("organisation.status_update_failed", organisation_id=str(org.id), exc_info=True)
            else:
                logger.warning("organisation.reprovision_failed", organisation_id=str(org.id), cause=exc.cause)
            raise OrganisationNotProvisionedError(str(org.id), exc.cause, status) from exc

    async def _mark(self, org: Organisation, status: ProvisioningStatus, **values: object) -> Organisation:
        updated = await self.repository.update(org.id, provisioning_status=status.value, **values)
        if updated is None:
            raise OrganisationNotFoundError(str(org.id))
        await self._invalidate(updated.domain)
        logger.info("organisation.provisioning_status", organisation_id=str(org.id), status=status.value)
        return updated

    async def _invalidate(self, domain: str) -> None:
        if self.domain_cache is not None:
            await self.domain_cache.invalidate(domain)
