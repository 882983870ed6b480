"""
FastAPI Dependencies - Authentication and authorization.

NO DICTIONARIES - All dependencies return typed objects.
"""

import secrets

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import settings
from app.db.models import User
from app.db.session import get_read_db
from app.models.api import UserRole

logger = get_logger(__name__)


async def require_api_key(
    x_api_key: str | None = Header(None, description="Service API key"),
) -> None:
    """
    Require the shared service key in the X-API-Key header.

    Raises:
        HTTPException 401 if the key is missing, wrong, or not configured
    """
    if not settings.service_api_key:
        logger.error("service_api_key_not_configured")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Service API key not configured",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if not x_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-API-Key header required",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if not secrets.compare_digest(x_api_key, settings.service_api_key):
        logger.warning("api_key_rejected", key_prefix=x_api_key[:4])
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )


async def get_current_admin(
    x_admin_id: str | None = Header(None, description="Acting admin user id"),
    db: AsyncSession = Depends(get_read_db),
    _: None = Depends(require_api_key),
) -> User:
    """
    Resolve the acting admin from the X-Admin-ID header.

    Raises:
        HTTPException(401): Header missing
        HTTPException(403): Unknown user or user without the admin role

    Returns:
        User: The acting admin
    """
    if not x_admin_id:
        logger.warning("admin_auth_no_admin_id")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Admin-ID header required",
        )

    admin = await db.get(User, x_admin_id)

    if admin is None:
        logger.warning("admin_auth_user_not_found", admin_id=x_admin_id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )

    if admin.role != UserRole.ADMIN.value:
        logger.warning(
            "admin_auth_insufficient_role",
            admin_id=x_admin_id,
            email=admin.email,
            role=admin.role,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )

    logger.debug("admin_auth_success", admin_id=admin.id, email=admin.email)
    return admin
