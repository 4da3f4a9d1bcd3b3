"""Tenant-scoped user operations.

Runs on the request's pinned session: ``users`` resolves to the tenant's
schema through the search path, so nothing here names a schema.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.saas.core.exceptions import UserConflictError, UserNotFoundError
from src.saas.models.tenant import User

logger = structlog.get_logger(__name__)


class UserService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_users(self) -> list[User]:
        result = await self.session.execute(
            select(User).where(User.deleted_at.is_(None)).order_by(User.created_at)
        )
        return list(result.scalars().all())

    async def create_user(self, email: str) -> User:
        user = User(id=uuid.uuid4(), email=email)
        self.session.add(user)
        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            raise UserConflictError(email) from exc
        await self.session.refresh(user)
        logger.info("user.created", user_id=str(user.id))
        return user

    async def get_user(self, user_id: uuid.UUID) -> User:
        result = await self.session.execute(
            select(User).where(User.id == user_id, User.deleted_at.is_(None))
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise UserNotFoundError(str(user_id))
        return user

    async def soft_delete_user(self, user_id: uuid.UUID) -> User:
        user = await self.get_user(user_id)
        user.deleted_at = datetime.now(timezone.utc)
        await self.session.commit()
        logger.info("user.deleted", user_id=str(user_id))
        return user
