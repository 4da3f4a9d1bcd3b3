"""Tests for tenant schema naming, domain extraction and the tenant contextvar."""

from __future__ import annotations

import asyncio
import re
import uuid

import pytest

from src.saas.core.tenant import (
    MAX_IDENTIFIER_LENGTH,
    InvalidTenantIdentifier,
    TenantContext,
    extract_domain,
    get_current_tenant,
    normalize_domain,
    quote_identifier,
    reset_tenant_context,
    sanitize_identifier,
    schema_name_for,
    set_tenant_context,
)

SCHEMA_RE = re.compile(r"^tenant_[A-Za-z0-9_]*$")


# ── Schema Naming ───────────────────────────────────────────────────────────


def test_schema_name_for_uuid_strips_hyphens():
    org_id = "3f1c2a9e-4b7d-4e21-9a0c-5d6e7f8a9b01"
    assert schema_name_for(org_id) == "tenant_3f1c2a9e4b7d4e219a0c5d6e7f8a9b01"


def test_schema_name_for_accepts_uuid_objects():
    org_id = uuid.UUID("3f1c2a9e-4b7d-4e21-9a0c-5d6e7f8a9b01")
    assert schema_name_for(org_id) == schema_name_for(str(org_id))


@pytest.mark.parametrize(
    "org_id",
    [
        "abc",
        "ABC_123",
        'x"; DROP SCHEMA public CASCADE; --',
        "tenant$weird name!",
        "é-ü-ß-42",
        "a.b.c/d\\e",
    ],
)
def test_schema_name_only_contains_safe_characters(org_id):
    name = schema_name_for(org_id)
    assert SCHEMA_RE.match(name), name
    assert len(name) <= MAX_IDENTIFIER_LENGTH


def test_injection_attempt_is_neutralised():
    assert schema_name_for('x"; DROP SCHEMA public CASCADE; --') == "tenant_xDROPSCHEMApublicCASCADE"


@pytest.mark.parametrize("org_id", ["", "---", "!@#$%", "   "])
def test_schema_name_rejects_ids_without_identifier_characters(org_id):
    with pytest.raises(InvalidTenantIdentifier):
        schema_name_for(org_id)


def test_schema_name_rejects_ids_that_would_be_truncated():
    longest = "a" * (MAX_IDENTIFIER_LENGTH - len("tenant_"))
    assert len(schema_name_for(longest)) == MAX_IDENTIFIER_LENGTH
    with pytest.raises(InvalidTenantIdentifier, match="exceeds"):
        schema_name_for(longest + "a")


def test_distinct_uuids_never_collide():
    ids = {str(uuid.uuid4()) for _ in range(2000)}
    names = {schema_name_for(i) for i in ids}
    assert len(names) == len(ids)


def test_sanitize_identifier():
    assert sanitize_identifier("a-b_c.d 1") == "ab_cd1"


def test_quote_identifier_refuses_unsafe_names():
    assert quote_identifier("tenant_abc") == '"tenant_abc"'
    with pytest.raises(InvalidTenantIdentifier):
        quote_identifier('tenant_abc"; --')
    with pytest.raises(InvalidTenantIdentifier):
        quote_identifier("")


# ── Domain Extraction ───────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("acme.example.com", "acme.example.com"),
        ("Acme.Example.COM", "acme.example.com"),
        ("acme.example.com:8443", "acme.example.com"),
        ("acme.example.com.", "acme.example.com"),
        ("  acme.example.com  ", "acme.example.com"),
        ("[::1]:8000", "[::1]"),
        ("", ""),
        (None, ""),
    ],
)
def test_normalize_domain(raw, expected):
    assert normalize_domain(raw) == expected


def test_explicit_header_wins_over_host():
    headers = {"host": "portal.example.com", "x-tenant-domain": "acme.example.com"}
    assert extract_domain(headers) == "acme.example.com"


def test_host_used_when_explicit_header_absent_or_blank():
    assert extract_domain({"host": "globex.example.com:443"}) == "globex.example.com"
    assert extract_domain({"host": "globex.example.com", "x-tenant-domain": "  "}) == "globex.example.com"


def test_custom_tenant_header():
    headers = {"host": "portal.example.com", "x-org-domain": "acme.example.com"}
    assert extract_domain(headers, "X-Org-Domain") == "acme.example.com"


def test_no_domain_returns_empty_string():
    assert extract_domain({}) == ""


# ── Tenant Context Propagation ──────────────────────────────────────────────


def _ctx(org_id: str, domain: str) -> TenantContext:
    return TenantContext(
        organisation_id=org_id,
        organisation_name=domain.split(".")[0].title(),
        domain=domain,
        schema_name=schema_name_for(org_id),
    )


def test_tenant_context_propagation():
    """Setting tenant context makes it accessible via get_current_tenant()."""
    ctx = _ctx("org1", "acme.example.com")
    token = set_tenant_context(ctx)
    try:
        current = get_current_tenant()
        assert current.organisation_id == "org1"
        assert current.schema_name == "tenant_org1"
        assert current.search_path == ("tenant_org1", "public")
    finally:
        reset_tenant_context(token)


def test_no_tenant_context_raises():
    with pytest.raises(RuntimeError, match="No tenant context"):
        get_current_tenant()


@pytest.mark.asyncio
async def test_tenant_context_is_task_local():
    """Concurrent tasks each see only their own tenant context."""

    async def worker(ctx: TenantContext) -> str:
        token = set_tenant_context(ctx)
        try:
            await asyncio.sleep(0.01)
            return get_current_tenant().schema_name
        finally:
            reset_tenant_context(token)

    contexts = [_ctx(f"org{i}", f"t{i}.example.com") for i in range(20)]
    results = await asyncio.gather(*(worker(c) for c in contexts))
    assert results == [c.schema_name for c in contexts]
