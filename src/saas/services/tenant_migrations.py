"""Alembic migration helpers for the public schema and tenant schemas.

Provides functions to run Alembic migrations across all tenant schemas
or for a specific tenant schema.
"""

from __future__ import annotations

from argparse import Namespace

import structlog
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, text

from src.saas.config import get_settings
from src.saas.core.tenant import schema_name_for

logger = structlog.get_logger(__name__)


def _get_alembic_config(x: list[str] | None = None) -> Config:
    """Create an Alembic Config pointing to our alembic.ini."""
    return Config("alembic.ini", cmd_opts=Namespace(x=x or []))


def migrate_public(direction: str = "upgrade", revision: str = "public@head") -> None:
    config = _get_alembic_config(["schema=public"])
    if direction == "upgrade":
        command.upgrade(config, revision)
    elif direction == "downgrade":
        command.downgrade(config, revision)
    else:
        raise ValueError(f"Invalid direction: {direction}")


def migrate_tenant(schema_name: str, direction: str = "upgrade", revision: str = "tenant@head") -> None:
    """Run migration for a single tenant schema.

    Args:
        schema_name: The tenant schema name (from ``schema_name_for``)
        direction: "upgrade" or "downgrade"
        revision: Target revision (default: "tenant@head")
    """
    config = _get_alembic_config([f"schema={schema_name}"])

    if direction == "upgrade":
        command.upgrade(config, revision)
    elif direction == "downgrade":
        command.downgrade(config, revision)
    else:
        raise ValueError(f"Invalid direction: {direction}")


def active_tenant_schemas() -> list[str]:
    """Schema names of every active, non-deleted organisation."""
    engine = create_engine(get_settings().sync_database_url)
    try:
        with engine.connect() as conn:
            result = conn.execute(
                text(
                    "SELECT id FROM public.organisations "
                    "WHERE deleted_at IS NULL AND provisioning_status = 'active' "
                    "ORDER BY created_at"
                )
            )
            return [schema_name_for(row[0]) for row in result]
    finally:
        engine.dispose()


def migrate_all_tenants(direction: str = "upgrade", revision: str = "tenant@head") -> list[str]:
    """Run migrations for all active tenant schemas.

    Returns:
        List of schema names that were migrated.
    """
    migrated = []
    for schema_name in active_tenant_schemas():
        logger.info("migrations.tenant", schema_name=schema_name, direction=direction, revision=revision)
        migrate_tenant(schema_name, direction, revision)
        migrated.append(schema_name)
    return migrated
