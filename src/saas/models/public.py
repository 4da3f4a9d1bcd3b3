"""Public schema models -- tables that exist once in the 'public' schema.

The Organisation model lives here because it's used for tenant resolution
and is not duplicated per tenant schema.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, String, func, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.saas.core.database import PublicBase


class ProvisioningStatus(str, Enum):
    pending = "pending"
    active = "active"
    failed = "failed"


class Organisation(PublicBase):
    """Registered organisation (tenant) in the platform.

    Each organisation gets its own PostgreSQL schema, named from its id by
    ``schema_name_for``. ``domain`` is the routing key used by the resolver.
    The organisation is only resolvable once ``provisioning_status`` is
    ``active`` and it has not been soft-deleted.
    """

    __tablename__ = "organisations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    domain: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    sector: Mapped[str | None] = mapped_column(String(100), nullable=True)
    provisioning_status: Mapped[str] = mapped_column(
        String(20),
        default=ProvisioningStatus.pending.value,
        server_default=text("'pending'"),
        nullable=False,
    )
    provisioned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
