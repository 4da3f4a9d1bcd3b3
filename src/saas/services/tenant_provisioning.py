"""Tenant schema provisioning service.

Creates an organisation's isolated PostgreSQL schema and materialises the
full tenant table set inside it. This is the core of the organisation
onboarding flow and runs out-of-band from request handling, on its own
NullPool engine.

DDL is generated from a schema-qualified copy of the tenant metadata
(``build_tenant_metadata``); the shared model metadata is never mutated, so
provisioning runs can happen concurrently with each other and with requests.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

import structlog
from sqlalchemy import Connection, MetaData, inspect, text
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool
from sqlalchemy.schema import CreateIndex, CreateTable

from src.saas.config import get_settings
from src.saas.core.exceptions import ProvisioningError
from src.saas.core.monitoring import tenant_provisioning_duration_seconds, tenant_provisioning_total
from src.saas.core.tenant import InvalidTenantIdentifier, quote_identifier, schema_name_for
from src.saas.models.tenant import TENANT_TABLES

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ProvisioningResult:
    organisation_id: str
    schema_name: str
    schema_created: bool
    tables_created: list[str] = field(default_factory=list)


# ── Schema-qualified DDL ────────────────────────────────────────────────────


def build_tenant_metadata(schema_name: str) -> MetaData:
    """Copy every tenant table into a fresh MetaData qualified with ``schema_name``.

    Foreign keys between tenant tables are retargeted to the same schema.
    """
    metadata = MetaData()
    for table in TENANT_TABLES:
        table.to_metadata(metadata, schema=schema_name)
    return metadata


def render_tenant_ddl(schema_name: str) -> list[str]:
    """Return the DDL statements provisioning issues for ``schema_name``."""
    dialect = postgresql.dialect()
    statements = [f"CREATE SCHEMA IF NOT EXISTS {quote_identifier(schema_name)}"]
    for table in build_tenant_metadata(schema_name).sorted_tables:
        statements.append(str(CreateTable(table).compile(dialect=dialect)).strip())
        for index in sorted(table.indexes, key=lambda i: i.name or ""):
            statements.append(str(CreateIndex(index).compile(dialect=dialect)).strip())
    return statements


def _materialise_schema(connection: Connection, schema_name: str) -> tuple[bool, list[str]]:
    """Create the schema and any missing tenant tables. Runs inside one transaction."""
    quoted = quote_identifier(schema_name)

    # Serialise concurrent provisioning of the same schema
    connection.execute(text("SELECT pg_advisory_xact_lock(hashtext(:schema))"), {"schema": schema_name})

    inspector = inspect(connection)
    schema_created = schema_name not in inspector.get_schema_names()
    existing = set() if schema_created else set(inspector.get_table_names(schema=schema_name))

    connection.execute(text(f"CREATE SCHEMA IF NOT EXISTS {quoted}"))

    metadata = build_tenant_metadata(schema_name)
    metadata.create_all(connection, checkfirst=True)

    tables_created = [t.name for t in metadata.sorted_tables if t.name not in existing]
    return schema_created, tables_created


# ── Provisioner ─────────────────────────────────────────────────────────────


class SchemaProvisioner:
    """Provision tenant schemas on a dedicated connection.

    ``provision`` is idempotent: a second call for the same organisation
    creates only what is missing and leaves existing tables untouched.
    """

    def __init__(self, database_url: str | None = None) -> None:
        self._database_url = database_url

    def _create_engine(self) -> AsyncEngine:
        url = self._database_url or get_settings().DATABASE_URL
        return create_async_engine(url, poolclass=NullPool)

    async def provision(self, organisation_id: object) -> ProvisioningResult:
        """Create the schema and tenant tables for ``organisation_id``.

        Raises:
            ProvisioningError: cause ``invalid_identifier`` (bad id, no I/O
                attempted), ``connection`` (database unreachable) or ``ddl``
                (schema/table creation failed; the transaction is rolled back).
        """
        org_id = str(organisation_id)
        log = logger.bind(organisation_id=org_id)
        start_time = time.perf_counter()

        try:
            schema_name = schema_name_for(org_id)
        except InvalidTenantIdentifier as exc:
            raise self._failure(log, org_id, "invalid_identifier", exc) from exc

        log = log.bind(schema_name=schema_name)
        engine = self._create_engine()
        try:
            try:
                conn = await engine.connect()
            except (SQLAlchemyError, OSError) as exc:
                raise self._failure(log, org_id, "connection", exc) from exc

            try:
                async with conn.begin():
                    schema_created, tables_created = await conn.run_sync(_materialise_schema, schema_name)
            except (SQLAlchemyError, OSError) as exc:
                raise self._failure(log, org_id, "ddl", exc) from exc
            finally:
                await conn.close()
        finally:
            await engine.dispose()

        duration = time.perf_counter() - start_time
        tenant_provisioning_total.labels(outcome="success").inc()
        tenant_provisioning_duration_seconds.observe(duration)
        log.info(
            "provisioning.completed",
            schema_created=schema_created,
            tables_created=len(tables_created),
            duration_ms=round(duration * 1000, 2),
        )
        return ProvisioningResult(
            organisation_id=org_id,
            schema_name=schema_name,
            schema_created=schema_created,
            tables_created=tables_created,
        )

    @staticmethod
    def _failure(log: structlog.stdlib.BoundLogger, organisation_id: str, cause: str, exc: BaseException) -> ProvisioningError:
        tenant_provisioning_total.labels(outcome=cause).inc()
        log.error("provisioning.failed", cause=cause, error=str(exc))
        return ProvisioningError(organisation_id, cause, str(exc))


async def provision(organisation_id: object) -> ProvisioningResult:
    """Provision the tenant schema for an organisation with the default provisioner."""
    return await SchemaProvisioner().provision(organisation_id)
