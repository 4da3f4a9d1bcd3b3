"""Initial tenant schema: the full tenant table set.

Revision ID: 002_initial_tenant
Revises:
Create Date: 2026-10-16

Run once per tenant schema (alembic -x schema=tenant_<id> upgrade tenant@head).
This baseline goes through the same schema-qualified metadata copy as the
provisioner with checkfirst, so schemas created by provisioning before they
were ever migrated are adopted without error. Later tenant revisions use
plain op.* calls; env.py pins the search path to the target schema.
"""

from typing import Sequence, Union

from alembic import context, op

from src.saas.services.tenant_provisioning import build_tenant_metadata

# revision identifiers, used by Alembic.
revision: str = "002_initial_tenant"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = ("tenant",)
depends_on: Union[str, Sequence[str], None] = None


def _target_schema() -> str:
    schema = context.get_x_argument(as_dictionary=True).get("schema")
    if not schema or schema == "public":
        raise RuntimeError("Tenant migrations need -x schema=tenant_<id>")
    return schema


def upgrade() -> None:
    build_tenant_metadata(_target_schema()).create_all(op.get_bind(), checkfirst=True)


def downgrade() -> None:
    build_tenant_metadata(_target_schema()).drop_all(op.get_bind(), checkfirst=True)
