"""
API dependencies for FastAPI endpoints.
Provides access to the service container, admin authentication and pagination.
"""

import secrets
from typing import Optional

from fastapi import Depends, Query, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

import structlog

from liquidlab.core.exceptions import AuthenticationError, ConfigurationError
from liquidlab.services.container import ServiceContainer
from liquidlab.api.schemas.common import PaginationParams


logger = structlog.get_logger(__name__)


admin_auth_scheme = HTTPBearer(auto_error=False)


def get_container(request: Request) -> ServiceContainer:
    """Service container built at startup."""
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise ConfigurationError("Services are not initialized")
    return container


async def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(admin_auth_scheme),
    container: ServiceContainer = Depends(get_container)
) -> dict:
    """Require `Authorization: Bearer <admin_api_key>`."""
    expected = container.settings.admin_api_key
    if not expected:
        logger.warning("Admin endpoint called but no admin API key is configured")
        raise AuthenticationError("Admin access is not configured")

    if credentials is None:
        raise AuthenticationError("Admin authentication required")

    if not secrets.compare_digest(credentials.credentials.strip(), expected):
        logger.warning("Invalid admin API key")
        raise AuthenticationError("Invalid admin credentials")

    return {"auth_type": "api_key", "admin": True}


async def get_pagination_params(
    limit: int = Query(100, ge=1, le=1000, description="Number of items per page"),
    offset: int = Query(0, ge=0, description="Number of items to skip")
) -> PaginationParams:
    """Get pagination parameters."""
    return PaginationParams(limit=limit, offset=offset)
