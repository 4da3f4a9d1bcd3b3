"""API middleware package."""

from src.saas.api.middleware.logging import LoggingMiddleware
from src.saas.api.middleware.tenant import TenantResolverMiddleware

__all__ = ["LoggingMiddleware", "TenantResolverMiddleware"]
