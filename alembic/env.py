"""Alembic environment for schema-per-tenant migrations.

Supports two migration modes via -x argument:
  alembic -x schema=public upgrade public@head           -- public schema only
  alembic -x schema=tenant_<id> upgrade tenant@head      -- one tenant schema

Each schema gets its own alembic_version table so migrations
are tracked independently per tenant.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool, text

from src.saas.config import get_settings
from src.saas.core.database import PublicBase, TenantBase
from src.saas.core.tenant import PUBLIC_SCHEMA, quote_identifier
from src.saas.models import public, tenant  # noqa: F401  (registers tables on the metadata)

# Alembic Config object
config = context.config

# Interpret the config file for Python logging
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Get schema from -x args
cmd_kwargs = context.get_x_argument(as_dictionary=True)
target_schema = cmd_kwargs.get("schema", PUBLIC_SCHEMA)

# Select metadata based on schema type
if target_schema == PUBLIC_SCHEMA:
    target_metadata = PublicBase.metadata
else:
    target_metadata = TenantBase.metadata


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    context.configure(
        url=get_settings().sync_database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        version_table_schema=target_schema,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    connectable = create_engine(get_settings().sync_database_url, poolclass=pool.NullPool)

    with connectable.connect() as connection:
        if target_schema != PUBLIC_SCHEMA:
            quoted = quote_identifier(target_schema)
            # The schema must exist before Alembic creates its version table there
            connection.execute(text(f"CREATE SCHEMA IF NOT EXISTS {quoted}"))
            connection.execute(text(f"SET search_path TO {quoted}, {PUBLIC_SCHEMA}"))
            connection.commit()
            # Schema-less tenant tables land in the target schema
            connection = connection.execution_options(schema_translate_map={None: target_schema})

        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            version_table_schema=target_schema,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
