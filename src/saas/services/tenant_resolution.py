"""Tenant resolution: domain -> organisation -> session pinned to its schema.

The TenantResolver is used by the request middleware but has no HTTP
dependency of its own. Collaborators are injected so tests can run with
in-memory doubles:

- ``lookup``: anything with ``async get_by_domain(domain) -> OrganisationRecord | None``
- ``tenant_session``: ``(schema_name, *, timeout) -> async context manager of AsyncSession``
- ``public_session``: ``(*, timeout) -> async context manager of AsyncSession``
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import AbstractAsyncContextManager, AsyncExitStack, asynccontextmanager
from dataclasses import asdict, dataclass
from typing import Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.saas.config import NotFoundPolicy, get_settings
from src.saas.core.database import open_public_request_session, open_public_session, open_tenant_session
from src.saas.core.exceptions import (
    MissingTenantError,
    SchemaPinError,
    TenancyError,
    TenantNotFoundError,
    TenantResolutionTimeout,
)
from src.saas.core.monitoring import tenant_resolution_duration_seconds, tenant_resolutions_total
from src.saas.core.tenant import PUBLIC_SCHEMA, TenantContext, extract_domain, schema_name_for
from src.saas.models.public import Organisation, ProvisioningStatus

logger = structlog.get_logger(__name__)

DOMAIN_CACHE_KEY = "tenant:domain:{domain}"
DOMAIN_GENERATION_KEY = "tenant:domain:{domain}:generation"


@dataclass(frozen=True)
class OrganisationRecord:
    """Detached, cacheable view of an organisation used during resolution."""

    id: str
    name: str
    domain: str
    sector: str | None = None

    @classmethod
    def from_model(cls, org: Organisation) -> OrganisationRecord:
        return cls(id=str(org.id), name=org.name, domain=org.domain, sector=org.sector)


class OrganisationLookup(Protocol):
    async def get_by_domain(self, domain: str) -> OrganisationRecord | None: ...


class DatabaseOrganisationLookup:
    """Look up active organisations by domain in the public schema.

    Uses a dedicated short-lived public session per lookup and, when a Redis
    client is given, caches hits for ``ttl`` seconds. Cache errors are logged
    and bypassed; the database stays the source of truth.

    Each domain has a generation counter. ``invalidate`` bumps it, and a
    cached entry is only served while it carries the current generation, so a
    lookup that read the database before a soft-delete cannot re-cache the
    deleted organisation after the invalidation. If the bump itself fails,
    the entry still expires after ``ttl``.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis | None = None,
        ttl: int = 60,
        session_factory: Callable[[], AbstractAsyncContextManager[AsyncSession]] = open_public_session,
    ):
        self._redis = redis_client if ttl > 0 else None
        self._ttl = ttl
        self._session_factory = session_factory

    async def get_by_domain(self, domain: str) -> OrganisationRecord | None:
        cached, generation = await self._cache_get(domain)
        if cached is not None:
            return cached

        async with self._session_factory() as session:
            result = await session.execute(
                select(Organisation).where(
                    Organisation.domain == domain,
                    Organisation.deleted_at.is_(None),
                    Organisation.provisioning_status == ProvisioningStatus.active.value,
                )
            )
            org = result.scalar_one_or_none()
            if org is None:
                return None
            record = OrganisationRecord.from_model(org)

        await self._cache_set(record, generation)
        return record

    async def invalidate(self, domain: str) -> None:
        """Retire any cached entry for ``domain`` (after soft-delete, restore or a status change)."""
        if not self._redis:
            return
        try:
            await self._redis.incr(DOMAIN_GENERATION_KEY.format(domain=domain))
            await self._redis.delete(DOMAIN_CACHE_KEY.format(domain=domain))
        except RedisError:
            logger.error("tenant_cache.invalidate_failed", domain=domain, ttl=self._ttl)

    async def _cache_get(self, domain: str) -> tuple[OrganisationRecord | None, str | None]:
        """Return the cached record (if current) and the domain's generation.

        The generation is None when Redis is unavailable; nothing is cached then.
        """
        if not self._redis:
            return None, None
        try:
            cached, generation = await self._redis.mget(
                DOMAIN_CACHE_KEY.format(domain=domain),
                DOMAIN_GENERATION_KEY.format(domain=domain),
            )
        except RedisError:
            logger.warning("tenant_cache.lookup_failed", domain=domain)
            return None, None
        generation = generation or "0"
        if not cached:
            return None, generation
        entry = json.loads(cached)
        if entry.get("generation") != generation:
            return None, generation
        return OrganisationRecord(**entry["organisation"]), generation

    async def _cache_set(self, record: OrganisationRecord, generation: str | None) -> None:
        if not self._redis or generation is None:
            return
        try:
            await self._redis.set(
                DOMAIN_CACHE_KEY.format(domain=record.domain),
                json.dumps({"organisation": asdict(record), "generation": generation}),
                ex=self._ttl,
            )
        except RedisError:
            logger.warning("tenant_cache.set_failed", domain=record.domain)


# ── Resolver ────────────────────────────────────────────────────────────────


@dataclass
class TenantScope:
    """What resolution attaches to a request.

    ``tenant`` and ``organisation`` are None only under the public-fallback
    policy; ``session`` is then a public-only session.
    """

    session: AsyncSession
    tenant: TenantContext | None = None
    organisation: OrganisationRecord | None = None


class TenantResolver:
    """Resolve a request's tenant and open a session pinned to its schema."""

    def __init__(
        self,
        lookup: OrganisationLookup,
        *,
        tenant_session: Callable[..., AbstractAsyncContextManager[AsyncSession]] = open_tenant_session,
        public_session: Callable[..., AbstractAsyncContextManager[AsyncSession]] = open_public_request_session,
        timeout: float | None = None,
        not_found_policy: NotFoundPolicy | None = None,
        domain_header: str | None = None,
    ):
        settings = get_settings()
        self.lookup = lookup
        self._tenant_session = tenant_session
        self._public_session = public_session
        self.timeout = settings.TENANT_RESOLUTION_TIMEOUT_SECONDS if timeout is None else timeout
        self.not_found_policy = not_found_policy or settings.TENANT_NOT_FOUND_POLICY
        self.domain_header = domain_header or settings.TENANT_DOMAIN_HEADER

    def extract_domain(self, headers: Mapping[str, str]) -> str:
        """Return the normalised tenant domain or raise MissingTenantError."""
        domain = extract_domain(headers, self.domain_header)
        if not domain:
            raise MissingTenantError()
        return domain

    async def find_organisation(self, domain: str, timeout: float | None = None) -> OrganisationRecord | None:
        """Look up the organisation for ``domain`` within ``timeout`` seconds."""
        try:
            return await asyncio.wait_for(self.lookup.get_by_domain(domain), timeout)
        except asyncio.TimeoutError as exc:
            raise TenantResolutionTimeout(domain, self.timeout, "lookup") from exc

    @asynccontextmanager
    async def scope(self, headers: Mapping[str, str]) -> AsyncIterator[TenantScope]:
        """Resolve the tenant for ``headers`` and yield its request scope.

        Everything up to the yield is bounded by ``self.timeout``. The
        session is closed (and its connection reset) when the block exits,
        whatever the handler did.

        Raises:
            MissingTenantError, TenantNotFoundError, TenantResolutionTimeout,
            SchemaPinError -- always before the caller's block runs.
        """
        start_time = time.perf_counter()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout

        try:
            domain = self.extract_domain(headers)
            organisation = await self.find_organisation(domain, self.timeout)
        except TenancyError as exc:
            tenant_resolutions_total.labels(outcome=exc.error_code).inc()
            raise

        if organisation is None:
            if self.not_found_policy == NotFoundPolicy.reject:
                tenant_resolutions_total.labels(outcome="tenant_not_found").inc()
                logger.info("tenant.not_found", domain=domain)
                raise TenantNotFoundError(domain)

            async with AsyncExitStack() as stack:
                session = await self._open_session(
                    stack, self._public_session(timeout=max(deadline - loop.time(), 0.0)), domain, PUBLIC_SCHEMA
                )
                tenant_resolutions_total.labels(outcome="public_fallback").inc()
                logger.info("tenant.public_fallback", domain=domain)
                yield TenantScope(session=session)
            return

        tenant = TenantContext(
            organisation_id=organisation.id,
            organisation_name=organisation.name,
            domain=domain,
            schema_name=schema_name_for(organisation.id),
        )

        async with AsyncExitStack() as stack:
            session = await self._open_session(
                stack,
                self._tenant_session(tenant.schema_name, timeout=max(deadline - loop.time(), 0.0)),
                domain,
                tenant.schema_name,
            )

            tenant_resolutions_total.labels(outcome="resolved").inc()
            tenant_resolution_duration_seconds.observe(time.perf_counter() - start_time)
            logger.debug(
                "tenant.resolved",
                domain=domain,
                organisation_id=tenant.organisation_id,
                schema_name=tenant.schema_name,
            )
            yield TenantScope(session=session, tenant=tenant, organisation=organisation)

    async def _open_session(
        self,
        stack: AsyncExitStack,
        opener: AbstractAsyncContextManager[AsyncSession],
        domain: str,
        schema_name: str,
    ) -> AsyncSession:
        """Enter ``opener`` on ``stack``, mapping pin timeouts and failures to tenancy errors."""
        try:
            return await stack.enter_async_context(opener)
        except asyncio.TimeoutError as exc:
            tenant_resolutions_total.labels(outcome="tenant_resolution_timeout").inc()
            raise TenantResolutionTimeout(domain, self.timeout, "schema_pin") from exc
        except SchemaPinError:
            tenant_resolutions_total.labels(outcome="tenant_schema_unavailable").inc()
            logger.error("tenant.schema_pin_failed", domain=domain, schema_name=schema_name)
            raise
