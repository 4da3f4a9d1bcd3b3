"""Async SQLAlchemy engine with schema-per-tenant isolation.

Provides:
- PublicBase: Declarative base for shared tables in the public schema (organisations)
- TenantBase: Declarative base for per-tenant tables (no schema; resolved via search_path)
- open_public_session(): Session on the public schema
- open_tenant_session(): Session on a pooled connection pinned to a tenant schema
- open_public_request_session(): Pinned session for requests with no resolved tenant
- Pool checkout event that resets session state (RESET ALL) to prevent stale leaks
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from sqlalchemy import MetaData, event, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from src.saas.config import get_settings
from src.saas.core.exceptions import SchemaPinError
from src.saas.core.tenant import PUBLIC_SCHEMA, quote_identifier

logger = structlog.get_logger(__name__)

# ── Module-level engine (lazy init) ────────────────────────────────────────

_engine: AsyncEngine | None = None


def get_engine() -> AsyncEngine:
    """Get or create the async engine singleton (the request-handling pool)."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.DATABASE_URL,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
            pool_pre_ping=True,
            echo=False,
        )

        # Critical: Reset session variables on every connection checkout
        # so a search_path pinned by a previous request never leaks
        @event.listens_for(_engine.sync_engine, "checkout")
        def reset_session_state(dbapi_conn: Any, connection_record: Any, connection_proxy: Any) -> None:
            cursor = dbapi_conn.cursor()
            cursor.execute("RESET ALL")
            cursor.close()

    return _engine


# ── Declarative Bases ───────────────────────────────────────────────────────

public_metadata = MetaData(schema=PUBLIC_SCHEMA)
tenant_metadata = MetaData()


class PublicBase(DeclarativeBase):
    """Base class for shared models in the public schema (e.g., organisations)."""

    metadata = public_metadata


class TenantBase(DeclarativeBase):
    """Base class for per-tenant schema models.

    Tables carry no schema. Queries resolve them through the session's
    search_path; provisioning copies them into a schema-qualified MetaData.
    """

    metadata = tenant_metadata


# ── Search Path Pinning ─────────────────────────────────────────────────────


async def pin_search_path(
    conn: AsyncConnection,
    schema_name: str,
    statement_timeout_ms: int | None = None,
) -> None:
    """Pin ``conn`` to ``schema_name`` then public, and bound its statement time.

    Pinning to ``public`` itself gives a search path of public alone. The
    settings are committed so a later rollback by the request's session
    cannot revert them.

    Raises:
        SchemaPinError: the SET statements failed.
    """
    if schema_name == PUBLIC_SCHEMA:
        search_path = PUBLIC_SCHEMA
    else:
        search_path = f"{quote_identifier(schema_name)}, {PUBLIC_SCHEMA}"
    try:
        await conn.execute(text(f"SET search_path TO {search_path}"))
        if statement_timeout_ms is not None:
            await conn.execute(text(f"SET statement_timeout = {int(statement_timeout_ms)}"))
        await conn.commit()
    except (DBAPIError, OSError) as exc:
        raise SchemaPinError(schema_name, str(getattr(exc, "orig", exc))) from exc


def _remaining(deadline: float | None) -> float | None:
    if deadline is None:
        return None
    return max(deadline - asyncio.get_running_loop().time(), 0.0)


async def _discard(conn: AsyncConnection) -> None:
    """Drop a connection whose session state is unknown instead of pooling it."""
    try:
        await conn.invalidate()
    finally:
        await conn.close()


async def checkout_pinned_connection(
    engine: AsyncEngine,
    schema_name: str,
    *,
    statement_timeout_ms: int | None = None,
    timeout: float | None = None,
) -> AsyncConnection:
    """Borrow a pooled connection and pin it to a tenant schema.

    A SchemaPinError is retried once on a fresh connection (the failed one
    is invalidated); the second failure propagates. ``timeout`` bounds the
    whole checkout including the retry and raises ``asyncio.TimeoutError``.
    """
    deadline = None if timeout is None else asyncio.get_running_loop().time() + timeout

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(2),
        retry=retry_if_exception_type(SchemaPinError),
        reraise=True,
    ):
        with attempt:
            conn = await asyncio.wait_for(engine.connect(), _remaining(deadline))
            try:
                await asyncio.wait_for(
                    pin_search_path(conn, schema_name, statement_timeout_ms),
                    _remaining(deadline),
                )
            except Exception as exc:
                if isinstance(exc, SchemaPinError):
                    logger.warning(
                        "database.schema_pin_failed",
                        schema_name=schema_name,
                        attempt=attempt.retry_state.attempt_number,
                    )
                await _discard(conn)
                raise
            return conn

    raise AssertionError("unreachable")  # pragma: no cover


async def release_connection(conn: AsyncConnection) -> None:
    """Reset session state and return ``conn`` to the pool.

    If the reset fails the connection is invalidated so it is never handed
    to another request with a stale tenant search_path.
    """
    try:
        if conn.in_transaction():
            await conn.rollback()
        await conn.execute(text("RESET ALL"))
        await conn.commit()
    except (DBAPIError, OSError):
        logger.warning("database.connection_reset_failed", exc_info=True)
        await conn.invalidate()
    finally:
        await conn.close()


# ── Session Factories ───────────────────────────────────────────────────────


@asynccontextmanager
async def open_public_session() -> AsyncIterator[AsyncSession]:
    """Session on the public schema (no tenant scoping)."""
    engine = get_engine()
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


@asynccontextmanager
async def open_tenant_session(
    schema_name: str,
    *,
    timeout: float | None = None,
    statement_timeout_ms: int | None = None,
) -> AsyncIterator[AsyncSession]:
    """Session on one pooled connection pinned to ``schema_name``.

    1. Borrows a connection from the shared pool
    2. SET search_path TO "<schema>", public and a bounded statement_timeout
    3. Yields an AsyncSession bound to that connection
    4. Rolls back, RESET ALL and releases the connection in a finally block
    """
    settings = get_settings()
    if statement_timeout_ms is None:
        statement_timeout_ms = settings.TENANT_STATEMENT_TIMEOUT_MS

    conn = await checkout_pinned_connection(
        get_engine(),
        schema_name,
        statement_timeout_ms=statement_timeout_ms,
        timeout=timeout,
    )
    try:
        async with AsyncSession(bind=conn, expire_on_commit=False) as session:
            yield session
    finally:
        await release_connection(conn)


@asynccontextmanager
async def open_public_request_session(*, timeout: float | None = None) -> AsyncIterator[AsyncSession]:
    """Request session for an unresolved tenant: search_path is public alone."""
    async with open_tenant_session(PUBLIC_SCHEMA, timeout=timeout) as session:
        yield session


# ── Database Initialization ─────────────────────────────────────────────────


async def init_db() -> None:
    """Create the public tables if they don't exist."""
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(PublicBase.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine
    if _engine:
        await _engine.dispose()
        _engine = None
