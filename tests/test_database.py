"""Tests for search-path pinning, the single pin retry and connection release.

Uses AsyncMock connections; no database required.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import DBAPIError

from src.saas.core.database import checkout_pinned_connection, pin_search_path, release_connection
from src.saas.core.exceptions import SchemaPinError


def _mock_conn(execute_side_effect=None) -> AsyncMock:
    conn = AsyncMock()
    conn.execute = AsyncMock(side_effect=execute_side_effect)
    conn.in_transaction = MagicMock(return_value=False)
    return conn


def _sql(conn: AsyncMock) -> list[str]:
    return [str(c.args[0]) for c in conn.execute.await_args_list]


def _db_error(message: str = 'schema "tenant_x" does not exist') -> DBAPIError:
    return DBAPIError("SET search_path", {}, Exception(message))


# ── pin_search_path ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_pin_sets_tenant_schema_first_then_public():
    conn = _mock_conn()
    await pin_search_path(conn, "tenant_abc", statement_timeout_ms=5000)

    assert _sql(conn) == [
        'SET search_path TO "tenant_abc", public',
        "SET statement_timeout = 5000",
    ]
    conn.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_pin_to_public_sets_public_alone():
    conn = _mock_conn()
    await pin_search_path(conn, "public", statement_timeout_ms=5000)

    assert _sql(conn) == [
        "SET search_path TO public",
        "SET statement_timeout = 5000",
    ]
    conn.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_pin_without_statement_timeout():
    conn = _mock_conn()
    await pin_search_path(conn, "tenant_abc")
    assert _sql(conn) == ['SET search_path TO "tenant_abc", public']


@pytest.mark.asyncio
async def test_pin_failure_raises_schema_pin_error():
    conn = _mock_conn(execute_side_effect=_db_error())
    with pytest.raises(SchemaPinError) as exc_info:
        await pin_search_path(conn, "tenant_abc")
    assert exc_info.value.status_code == 503
    assert exc_info.value.error_code == "tenant_schema_unavailable"
    conn.commit.assert_not_awaited()


# ── checkout_pinned_connection ──────────────────────────────────────────────


@pytest.mark.asyncio
async def test_checkout_returns_pinned_connection():
    conn = _mock_conn()
    engine = MagicMock()
    engine.connect = AsyncMock(return_value=conn)

    result = await checkout_pinned_connection(engine, "tenant_abc", statement_timeout_ms=1000)

    assert result is conn
    assert _sql(conn)[0] == 'SET search_path TO "tenant_abc", public'
    conn.invalidate.assert_not_awaited()


@pytest.mark.asyncio
async def test_checkout_retries_once_on_fresh_connection():
    bad = _mock_conn(execute_side_effect=_db_error())
    good = _mock_conn()
    engine = MagicMock()
    engine.connect = AsyncMock(side_effect=[bad, good])

    result = await checkout_pinned_connection(engine, "tenant_abc")

    assert result is good
    assert engine.connect.await_count == 2
    bad.invalidate.assert_awaited_once()
    bad.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_checkout_gives_up_after_second_failure():
    first = _mock_conn(execute_side_effect=_db_error())
    second = _mock_conn(execute_side_effect=_db_error())
    engine = MagicMock()
    engine.connect = AsyncMock(side_effect=[first, second])

    with pytest.raises(SchemaPinError):
        await checkout_pinned_connection(engine, "tenant_abc")

    assert engine.connect.await_count == 2
    first.invalidate.assert_awaited_once()
    second.invalidate.assert_awaited_once()


@pytest.mark.asyncio
async def test_checkout_timeout_is_not_retried():
    async def slow_execute(*args, **kwargs):
        await asyncio.sleep(1)

    conn = _mock_conn(execute_side_effect=slow_execute)
    engine = MagicMock()
    engine.connect = AsyncMock(return_value=conn)

    with pytest.raises(asyncio.TimeoutError):
        await checkout_pinned_connection(engine, "tenant_abc", timeout=0.05)

    assert engine.connect.await_count == 1
    conn.invalidate.assert_awaited_once()


# ── release_connection ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_release_rolls_back_and_resets():
    conn = _mock_conn()
    conn.in_transaction = MagicMock(return_value=True)

    await release_connection(conn)

    conn.rollback.assert_awaited_once()
    assert _sql(conn) == ["RESET ALL"]
    conn.commit.assert_awaited_once()
    conn.invalidate.assert_not_awaited()
    conn.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_release_invalidates_when_reset_fails():
    conn = _mock_conn(execute_side_effect=_db_error("connection lost"))

    await release_connection(conn)

    conn.invalidate.assert_awaited_once()
    conn.close.assert_awaited_once()
