"""Shared test doubles and fixtures.

Provides:
- InMemoryOrganisationLookup: domain -> OrganisationRecord without a database
- FakeSessionOpener: stands in for open_tenant_session / open_public_request_session
  and records which schema each "session" was pinned to and when it closed
- A TenantResolver wired to those doubles
- The FastAPI app with the resolver swapped in, and an httpx AsyncClient

Nothing here needs PostgreSQL or Redis; the integration tests in
test_tenant_isolation.py bring their own database fixtures.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.saas.config import NotFoundPolicy
from src.saas.core.tenant import PUBLIC_SCHEMA
from src.saas.services.tenant_resolution import OrganisationRecord, TenantResolver

ACME_ID = "3f1c2a9e-4b7d-4e21-9a0c-5d6e7f8a9b01"
GLOBEX_ID = "9b8a7f6e-5d4c-4b3a-8e21-0c1d2e3f4a5b"


# ── In-Memory Test Doubles ──────────────────────────────────────────────────


class InMemoryOrganisationLookup:
    """In-memory organisation lookup for testing without a database."""

    def __init__(self, records: list[OrganisationRecord] | None = None) -> None:
        self._records = {r.domain: r for r in records or []}
        self.calls: list[str] = []
        self.invalidated: list[str] = []

    def add(self, record: OrganisationRecord) -> None:
        self._records[record.domain] = record

    def remove(self, domain: str) -> None:
        self._records.pop(domain, None)

    async def get_by_domain(self, domain: str) -> OrganisationRecord | None:
        self.calls.append(domain)
        return self._records.get(domain)

    async def invalidate(self, domain: str) -> None:
        self.invalidated.append(domain)


@dataclass
class FakeSession:
    """Marker object standing in for an AsyncSession."""

    schema_name: str
    closed: bool = False


@dataclass
class FakeSessionOpener:
    """Records every session opened and closed, by schema name."""

    opened: list[str] = field(default_factory=list)
    closed: list[str] = field(default_factory=list)
    timeouts: list[float | None] = field(default_factory=list)

    @asynccontextmanager
    async def tenant(self, schema_name: str, *, timeout: float | None = None) -> AsyncIterator[FakeSession]:
        self.opened.append(schema_name)
        self.timeouts.append(timeout)
        session = FakeSession(schema_name)
        try:
            yield session
        finally:
            session.closed = True
            self.closed.append(schema_name)

    @asynccontextmanager
    async def public(self, *, timeout: float | None = None) -> AsyncIterator[FakeSession]:
        self.opened.append(PUBLIC_SCHEMA)
        self.timeouts.append(timeout)
        session = FakeSession(PUBLIC_SCHEMA)
        try:
            yield session
        finally:
            session.closed = True
            self.closed.append(PUBLIC_SCHEMA)


# ── Fixtures ────────────────────────────────────────────────────────────────


@pytest.fixture
def acme() -> OrganisationRecord:
    return OrganisationRecord(id=ACME_ID, name="Acme", domain="acme.example.com", sector="Manufacturing")


@pytest.fixture
def globex() -> OrganisationRecord:
    return OrganisationRecord(id=GLOBEX_ID, name="Globex", domain="globex.example.com")


@pytest.fixture
def lookup(acme, globex) -> InMemoryOrganisationLookup:
    return InMemoryOrganisationLookup([acme, globex])


@pytest.fixture
def sessions() -> FakeSessionOpener:
    return FakeSessionOpener()


@pytest.fixture
def resolver(lookup, sessions) -> TenantResolver:
    return TenantResolver(
        lookup,
        tenant_session=sessions.tenant,
        public_session=sessions.public,
        timeout=1.0,
        not_found_policy=NotFoundPolicy.reject,
        domain_header="X-Tenant-Domain",
    )


@pytest.fixture
def app(resolver):
    """FastAPI app with the tenant resolver swapped for one on in-memory doubles."""
    from src.saas.main import create_app

    application = create_app()
    application.state.tenant_resolver = resolver
    return application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing the API."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
