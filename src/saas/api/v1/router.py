"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.saas.api.v1 import health, organisations, tenant, users

router = APIRouter()

router.include_router(health.router)
router.include_router(organisations.router)
router.include_router(tenant.router)
router.include_router(users.router)
