"""Tenant context propagation and tenant schema naming.

This module is the foundation of multi-tenant isolation. ``schema_name_for``
is the single function that maps an organisation id to its PostgreSQL
schema; the provisioner, the request resolver, migrations and scripts all go
through it. The TenantContext is set by the resolver middleware at the start
of each request and is accessible anywhere in the call stack via
get_current_tenant().
"""

from __future__ import annotations

import contextvars
import re
from collections.abc import Mapping
from dataclasses import dataclass

# ── Schema Naming ───────────────────────────────────────────────────────────

TENANT_SCHEMA_PREFIX = "tenant_"
PUBLIC_SCHEMA = "public"

# PostgreSQL truncates identifiers longer than NAMEDATALEN - 1 bytes.
MAX_IDENTIFIER_LENGTH = 63

_UNSAFE_IDENTIFIER_CHARS = re.compile(r"[^A-Za-z0-9_]")


class InvalidTenantIdentifier(ValueError):
    """The organisation id cannot be turned into a usable schema name."""


def sanitize_identifier(value: str) -> str:
    """Strip every character outside ``[A-Za-z0-9_]``."""
    return _UNSAFE_IDENTIFIER_CHARS.sub("", str(value))


def schema_name_for(organisation_id: object) -> str:
    """Return the tenant schema name for an organisation id.

    ``schema_name_for("3f1c...-...")`` -> ``"tenant_3f1c..."``. The result
    only ever contains ``[A-Za-z0-9_]``, so it is safe to embed (quoted) in
    DDL and SET statements.

    Raises:
        InvalidTenantIdentifier: the id sanitises to an empty string, or the
            schema name would be truncated by PostgreSQL.
    """
    cleaned = sanitize_identifier(str(organisation_id))
    if not cleaned:
        raise InvalidTenantIdentifier(
            f"Organisation id {organisation_id!r} has no usable identifier characters"
        )
    schema_name = f"{TENANT_SCHEMA_PREFIX}{cleaned}"
    if len(schema_name) > MAX_IDENTIFIER_LENGTH:
        raise InvalidTenantIdentifier(
            f"Schema name for organisation {organisation_id!r} exceeds {MAX_IDENTIFIER_LENGTH} characters"
        )
    return schema_name


def quote_identifier(name: str) -> str:
    """Double-quote a sanitized identifier for interpolation into SQL."""
    if sanitize_identifier(name) != name or not name:
        raise InvalidTenantIdentifier(f"Refusing to quote unsafe identifier {name!r}")
    return f'"{name}"'


# ── Domain Extraction ───────────────────────────────────────────────────────


def normalize_domain(value: str | None) -> str:
    """Normalise a Host / tenant-domain header value to a lookup key.

    Lower-cases, trims whitespace, drops a port and a trailing dot:
    ``"Acme.Example.com:8443"`` -> ``"acme.example.com"``.
    """
    if not value:
        return ""
    host = value.strip().lower()
    if host.startswith("["):
        # IPv6 literal, e.g. "[::1]:8000"
        end = host.find("]")
        host = host[: end + 1] if end != -1 else host
    elif ":" in host:
        host = host.split(":", 1)[0]
    return host.rstrip(".")


def extract_domain(headers: Mapping[str, str], tenant_header: str = "X-Tenant-Domain") -> str:
    """Pick the tenant domain from request headers.

    The explicit tenant-domain header wins over Host; it is sent by callers
    (e.g. auth endpoints) that run before host-based routing applies.
    Returns an empty string when neither header carries a value.
    """
    explicit = normalize_domain(headers.get(tenant_header) or headers.get(tenant_header.lower()))
    if explicit:
        return explicit
    return normalize_domain(headers.get("host") or headers.get("Host"))


# ── Tenant Context ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TenantContext:
    """Immutable tenant context for the current request."""

    organisation_id: str
    organisation_name: str
    domain: str
    schema_name: str  # e.g., "tenant_3f1c2a..."

    @property
    def search_path(self) -> tuple[str, str]:
        return (self.schema_name, PUBLIC_SCHEMA)


_tenant_context: contextvars.ContextVar[TenantContext] = contextvars.ContextVar("tenant_context")


def get_current_tenant() -> TenantContext:
    """Get the tenant context for the current request.

    Raises RuntimeError if no tenant context has been set (i.e., the call
    is not within a tenant-scoped request).
    """
    try:
        return _tenant_context.get()
    except LookupError:
        raise RuntimeError("No tenant context set -- request is not tenant-scoped")


def set_tenant_context(ctx: TenantContext) -> contextvars.Token[TenantContext]:
    """Set the tenant context for the current request. Returns a token for reset."""
    return _tenant_context.set(ctx)


def reset_tenant_context(token: contextvars.Token[TenantContext]) -> None:
    _tenant_context.reset(token)


# ── Paths that skip tenant resolution ───────────────────────────────────────

SKIP_TENANT_PATHS = (
    "/health",
    "/metrics",
    "/docs",
    "/openapi.json",
    "/redoc",
    "/api/v1/organisations",
)
