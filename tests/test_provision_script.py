"""Tests for the provisioning CLI's input validation; no database required."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from scripts.provision_tenant import provision, validate_request


def test_input_is_normalised_like_the_api():
    body, admin = validate_request("  Acme ", "ACME.Example.com:443", "Manufacturing", "Admin@Acme.Example.com")

    assert body.name == "Acme"
    assert body.domain == "acme.example.com"
    assert admin.email == "admin@acme.example.com"


@pytest.mark.asyncio
@pytest.mark.parametrize("domain", ["not a domain", "-acme.example.com", "acme_.example.com"])
async def test_invalid_domain_rejected_before_database(domain, capsys, monkeypatch):
    init_db = AsyncMock()
    monkeypatch.setattr("src.saas.core.database.init_db", init_db)

    assert await provision("Acme", domain, None, None, None) == 1

    init_db.assert_not_awaited()
    assert "Invalid domain" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_invalid_admin_email_rejected_before_database(capsys, monkeypatch):
    init_db = AsyncMock()
    monkeypatch.setattr("src.saas.core.database.init_db", init_db)

    assert await provision("Acme", "acme.example.com", None, "not-an-email", None) == 1

    init_db.assert_not_awaited()
    assert "Invalid email" in capsys.readouterr().err
