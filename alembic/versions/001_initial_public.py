"""Initial public schema: organisations table.

Revision ID: 001_initial_public
Revises:
Create Date: 2026-10-16

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers, used by Alembic.
revision: str = "001_initial_public"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = ("public",)
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # gen_random_uuid() is built in from PostgreSQL 13; older servers need pgcrypto
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    op.create_table(
        "organisations",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("domain", sa.String(255), nullable=False),
        sa.Column("sector", sa.String(100), nullable=True),
        sa.Column("provisioning_status", sa.String(20), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("provisioned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("name", name="organisations_name_key"),
        sa.UniqueConstraint("domain", name="organisations_domain_key"),
        schema="public",
    )

    # Resolution looks up active, non-deleted organisations by domain
    op.create_index(
        "ix_organisations_domain_active",
        "organisations",
        ["domain"],
        schema="public",
        postgresql_where=sa.text("deleted_at IS NULL AND provisioning_status = 'active'"),
    )


def downgrade() -> None:
    op.drop_index("ix_organisations_domain_active", table_name="organisations", schema="public")
    op.drop_table("organisations", schema="public")
