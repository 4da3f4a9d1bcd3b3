#!/usr/bin/env python3
"""CLI script to run Alembic migrations for the public schema and tenant schemas.

Usage:
    python scripts/migrate_tenants.py                       # public, then every active tenant
    python scripts/migrate_tenants.py --schema tenant_3f1c  # one tenant schema
    python scripts/migrate_tenants.py --public-only
    python scripts/migrate_tenants.py --downgrade --revision base --schema tenant_3f1c

Must be run from the project root (alembic.ini is resolved relative to it).
"""

from __future__ import annotations

import argparse
import os
import sys

# Ensure project root is on sys.path so we can import src.saas
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


def main() -> None:
    from src.saas.api.middleware.logging import configure_structlog
    from src.saas.services.tenant_migrations import migrate_all_tenants, migrate_public, migrate_tenant

    parser = argparse.ArgumentParser(description="Run public and tenant schema migrations")
    parser.add_argument("--schema", default=None, help="Migrate only this tenant schema")
    parser.add_argument("--public-only", action="store_true", help="Migrate only the public schema")
    parser.add_argument("--downgrade", action="store_true", help="Downgrade instead of upgrade")
    parser.add_argument("--revision", default=None, help="Target revision (default: branch head)")
    args = parser.parse_args()

    if args.downgrade and not args.revision:
        parser.error("--downgrade needs an explicit --revision (e.g. base)")

    configure_structlog()
    direction = "downgrade" if args.downgrade else "upgrade"

    if args.schema:
        migrate_tenant(args.schema, direction, args.revision or "tenant@head")
        print(f"Migrated {args.schema}")
        return

    if args.public_only:
        migrate_public(direction, args.revision or "public@head")
        print("Migrated public")
        return

    # Tenant tables are only ever created after public exists
    if direction == "upgrade":
        migrate_public(direction, "public@head")
        print("Migrated public")

    migrated = migrate_all_tenants(direction, args.revision or "tenant@head")
    print(f"Migrated {len(migrated)} tenant schema(s)")
    for schema_name in migrated:
        print(f"  {schema_name}")


if __name__ == "__main__":
    main()
