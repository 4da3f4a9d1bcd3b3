"""Tests for tenant schema provisioning.

DDL generation is tested offline through render_tenant_ddl /
build_tenant_metadata; failure-cause mapping is tested with a mocked engine.
Provisioning against a real PostgreSQL lives in test_tenant_isolation.py.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError, ProgrammingError

from src.saas.core.database import TenantBase
from src.saas.core.exceptions import ProvisioningError
from src.saas.models.tenant import TENANT_TABLES
from src.saas.services.tenant_provisioning import (
    SchemaProvisioner,
    build_tenant_metadata,
    render_tenant_ddl,
)

ORG_ID = "3f1c2a9e-4b7d-4e21-9a0c-5d6e7f8a9b01"
SCHEMA = "tenant_3f1c2a9e4b7d4e219a0c5d6e7f8a9b01"

EXPECTED_TABLES = {
    "users",
    "profiles",
    "roles",
    "role_permissions",
    "user_roles",
    "workspaces",
    "workspace_roles",
    "workspace_role_permissions",
    "workspace_users",
    "workspace_user_roles",
    "user_invitations",
    "invitation_workspace_assignments",
    "invitation_audit_log",
    "magic_links",
}


# ── Schema-qualified DDL ────────────────────────────────────────────────────


def test_tenant_table_set_is_complete():
    assert {t.name for t in TENANT_TABLES} == EXPECTED_TABLES


def test_build_tenant_metadata_qualifies_every_table():
    metadata = build_tenant_metadata(SCHEMA)
    assert {t.name for t in metadata.sorted_tables} == EXPECTED_TABLES
    assert {t.schema for t in metadata.sorted_tables} == {SCHEMA}


def test_build_tenant_metadata_retargets_foreign_keys():
    metadata = build_tenant_metadata(SCHEMA)
    for table in metadata.sorted_tables:
        for fk in table.foreign_keys:
            assert fk.column.table.schema == SCHEMA, f"{table.name} -> {fk.target_fullname}"


def test_build_tenant_metadata_does_not_mutate_models():
    build_tenant_metadata(SCHEMA)
    build_tenant_metadata("tenant_other")
    assert all(t.schema is None for t in TenantBase.metadata.sorted_tables)


def test_render_tenant_ddl_creates_schema_first():
    ddl = render_tenant_ddl(SCHEMA)
    assert ddl[0] == f'CREATE SCHEMA IF NOT EXISTS "{SCHEMA}"'


def test_render_tenant_ddl_creates_each_table_in_the_schema():
    ddl = "\n".join(render_tenant_ddl(SCHEMA))
    for name in EXPECTED_TABLES:
        assert f"CREATE TABLE {SCHEMA}.{name} (" in ddl
    assert f"REFERENCES {SCHEMA}.users (id)" in ddl


def test_render_tenant_ddl_never_touches_public():
    ddl = "\n".join(render_tenant_ddl(SCHEMA))
    assert "public." not in ddl


def test_render_tenant_ddl_orders_referenced_tables_first():
    ddl = render_tenant_ddl(SCHEMA)
    created = [stmt.split("\n")[0] for stmt in ddl if stmt.startswith("CREATE TABLE")]
    order = [line[len(f"CREATE TABLE {SCHEMA}."):].split(" ")[0] for line in created]
    assert order.index("users") < order.index("profiles")
    assert order.index("roles") < order.index("role_permissions")
    assert order.index("user_invitations") < order.index("invitation_audit_log")


# ── Provisioner failure causes ──────────────────────────────────────────────


class _Transaction:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


def _provisioner_with(engine: MagicMock) -> SchemaProvisioner:
    provisioner = SchemaProvisioner("postgresql+asyncpg://unused/unused")
    provisioner._create_engine = MagicMock(return_value=engine)
    return provisioner


def _engine_with(conn: MagicMock | None = None, connect_error: Exception | None = None) -> MagicMock:
    engine = MagicMock()
    engine.connect = AsyncMock(return_value=conn, side_effect=connect_error)
    engine.dispose = AsyncMock()
    return engine


def _conn(run_sync_result=None, run_sync_error: Exception | None = None) -> MagicMock:
    conn = MagicMock()
    conn.begin = MagicMock(return_value=_Transaction())
    conn.run_sync = AsyncMock(return_value=run_sync_result, side_effect=run_sync_error)
    conn.close = AsyncMock()
    return conn


@pytest.mark.asyncio
async def test_provision_success_reports_what_was_created():
    conn = _conn(run_sync_result=(True, sorted(EXPECTED_TABLES)))
    engine = _engine_with(conn)

    result = await _provisioner_with(engine).provision(ORG_ID)

    assert result.organisation_id == ORG_ID
    assert result.schema_name == SCHEMA
    assert result.schema_created is True
    assert set(result.tables_created) == EXPECTED_TABLES
    conn.run_sync.assert_awaited_once()
    assert conn.run_sync.await_args.args[1] == SCHEMA
    conn.close.assert_awaited_once()
    engine.dispose.assert_awaited_once()


@pytest.mark.asyncio
async def test_provision_second_run_is_a_noop_result():
    conn = _conn(run_sync_result=(False, []))
    result = await _provisioner_with(_engine_with(conn)).provision(ORG_ID)
    assert result.schema_created is False
    assert result.tables_created == []


@pytest.mark.asyncio
@pytest.mark.parametrize("org_id", ["", "---", "a" * 80])
async def test_provision_invalid_identifier_does_no_io(org_id):
    provisioner = SchemaProvisioner()
    provisioner._create_engine = MagicMock()

    with pytest.raises(ProvisioningError) as exc_info:
        await provisioner.provision(org_id)

    assert exc_info.value.cause == "invalid_identifier"
    assert exc_info.value.error_code == "tenant_provisioning_failed"
    provisioner._create_engine.assert_not_called()


@pytest.mark.asyncio
async def test_provision_connection_failure():
    engine = _engine_with(connect_error=OSError("connection refused"))

    with pytest.raises(ProvisioningError) as exc_info:
        await _provisioner_with(engine).provision(ORG_ID)

    assert exc_info.value.cause == "connection"
    assert exc_info.value.details["organisation_id"] == ORG_ID
    engine.dispose.assert_awaited_once()


@pytest.mark.asyncio
async def test_provision_operational_error_on_connect():
    engine = _engine_with(connect_error=OperationalError("connect", {}, Exception("timeout")))

    with pytest.raises(ProvisioningError) as exc_info:
        await _provisioner_with(engine).provision(ORG_ID)

    assert exc_info.value.cause == "connection"


@pytest.mark.asyncio
async def test_provision_ddl_failure_closes_and_disposes():
    conn = _conn(run_sync_error=ProgrammingError("CREATE TABLE", {}, Exception("permission denied")))
    engine = _engine_with(conn)

    with pytest.raises(ProvisioningError) as exc_info:
        await _provisioner_with(engine).provision(ORG_ID)

    assert exc_info.value.cause == "ddl"
    assert "permission denied" in exc_info.value.message
    conn.close.assert_awaited_once()
    engine.dispose.assert_awaited_once()
