"""Unit tests for tenant-scoped user operations with a mocked session."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from src.saas.core.exceptions import UserConflictError, UserNotFoundError
from src.saas.models.tenant import User
from src.saas.services.users import UserService


def _session() -> MagicMock:
    session = MagicMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.refresh = AsyncMock()
    session.execute = AsyncMock()
    return session


@pytest.mark.asyncio
async def test_create_user_adds_and_commits():
    session = _session()
    user = await UserService(session).create_user("alice@acme.example.com")

    assert isinstance(user, User)
    assert user.email == "alice@acme.example.com"
    session.add.assert_called_once_with(user)
    session.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_duplicate_email_raises_conflict_and_rolls_back():
    session = _session()
    session.commit = AsyncMock(side_effect=IntegrityError("INSERT", {}, Exception("duplicate key")))

    with pytest.raises(UserConflictError) as exc_info:
        await UserService(session).create_user("alice@acme.example.com")

    assert exc_info.value.status_code == 409
    session.rollback.assert_awaited_once()


@pytest.mark.asyncio
async def test_get_missing_user_raises_not_found():
    session = _session()
    result = MagicMock()
    result.scalar_one_or_none = MagicMock(return_value=None)
    session.execute = AsyncMock(return_value=result)

    with pytest.raises(UserNotFoundError):
        await UserService(session).get_user(uuid.uuid4())


@pytest.mark.asyncio
async def test_soft_delete_sets_deleted_at():
    user = User(id=uuid.uuid4(), email="bob@acme.example.com")
    session = _session()
    result = MagicMock()
    result.scalar_one_or_none = MagicMock(return_value=user)
    session.execute = AsyncMock(return_value=result)

    deleted = await UserService(session).soft_delete_user(user.id)

    assert deleted.deleted_at is not None
    session.commit.assert_awaited_once()
