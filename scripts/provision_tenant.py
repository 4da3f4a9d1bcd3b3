#!/usr/bin/env python3
"""CLI script to create and provision an organisation.

Usage:
    python scripts/provision_tenant.py --name "Acme" --domain acme.example.com
    python scripts/provision_tenant.py --name "Acme" --domain acme.example.com --admin-email admin@acme.example.com
    python scripts/provision_tenant.py --retry 3f1c2a...   # re-provision an existing organisation

Connects directly to the database using DATABASE_URL from environment or .env file.
Creates the organisation in public.organisations, provisions its tenant schema
and marks it active. Optionally creates an initial user inside the new schema.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
import uuid

# Ensure project root is on sys.path so we can import src.saas
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


def validate_request(name: str | None, domain: str | None, sector: str | None, admin_email: str | None):
    """Validate CLI input with the same schemas the API uses.

    Returns (OrganisationCreate | None, UserCreate | None); raises pydantic.ValidationError.
    """
    from src.saas.schemas.organisation import OrganisationCreate
    from src.saas.schemas.tenant import UserCreate

    body = OrganisationCreate(name=name, domain=domain, sector=sector) if name or domain else None
    admin = UserCreate(email=admin_email) if admin_email else None
    return body, admin


async def provision(name: str | None, domain: str | None, sector: str | None, admin_email: str | None, retry: str | None) -> int:
    """Create/provision an organisation by calling the services directly."""
    from pydantic import ValidationError

    from src.saas.api.middleware.logging import configure_structlog
    from src.saas.core.database import close_db, init_db, open_public_session, open_tenant_session
    from src.saas.core.exceptions import TenancyError
    from src.saas.core.tenant import schema_name_for
    from src.saas.services.organisations import OrganisationRepository, OrganisationService
    from src.saas.services.tenant_provisioning import SchemaProvisioner
    from src.saas.services.users import UserService

    try:
        body, admin = validate_request(None if retry else name, None if retry else domain, sector, admin_email)
    except ValidationError as exc:
        for error in exc.errors():
            field = ".".join(str(part) for part in error["loc"])
            print(f"Invalid {field}: {error['msg']}", file=sys.stderr)
        return 1

    configure_structlog()
    await init_db()

    service = OrganisationService(OrganisationRepository(open_public_session), SchemaProvisioner())
    try:
        if retry:
            org, result = await service.retry_provisioning(uuid.UUID(retry))
            print(f"Organisation re-provisioned: {org.name}")
            print(f"  Schema:         {result.schema_name}")
            print(f"  Tables created: {', '.join(result.tables_created) or '(none, already complete)'}")
            return 0

        print(f"Provisioning organisation: name={body.name}, domain={body.domain}")
        org = await service.create(name=body.name, domain=body.domain, sector=body.sector)
        schema_name = schema_name_for(org.id)
        print("Organisation provisioned successfully:")
        print(f"  ID:     {org.id}")
        print(f"  Name:   {org.name}")
        print(f"  Domain: {org.domain}")
        print(f"  Schema: {schema_name}")

        if admin:
            async with open_tenant_session(schema_name) as session:
                user = await UserService(session).create_user(admin.email)
            print(f"  Initial user created: {user.email}")
        return 0
    except TenancyError as exc:
        print(f"Error [{exc.error_code}]: {exc.message}", file=sys.stderr)
        return 1
    finally:
        await close_db()


def main() -> None:
    parser = argparse.ArgumentParser(description="Create and provision an organisation")
    parser.add_argument("--name", default=None, help="Organisation name (e.g., 'Acme')")
    parser.add_argument("--domain", default=None, help="Routing domain (e.g., acme.example.com)")
    parser.add_argument("--sector", default=None, help="Optional sector")
    parser.add_argument("--admin-email", default=None, help="Initial user email inside the tenant schema")
    parser.add_argument("--retry", default=None, metavar="ORGANISATION_ID", help="Re-provision an existing organisation")
    args = parser.parse_args()

    if not args.retry and not (args.name and args.domain):
        parser.error("--name and --domain are required unless --retry is given")

    sys.exit(asyncio.run(provision(args.name, args.domain, args.sector, args.admin_email, args.retry)))


if __name__ == "__main__":
    main()
