from typing import Any, Dict, Optional

import structlog
from fastapi import Depends, Header

from app.core.auth_provider import IdentityProvider
from app.services.user_data import UserDeletionService, UserMigrationService
from common.errors import AuthenticationError
from infrastructure.config import settings

logger = structlog.get_logger()


def get_identity_provider() -> IdentityProvider:
    from app.infrastructure.firebase import get_identity_provider as default_provider
    return default_provider()


def get_migration_service() -> UserMigrationService:
    return UserMigrationService()


def get_deletion_service() -> UserDeletionService:
    return UserDeletionService()


async def get_token_claims(
    authorization: Optional[str] = Header(default=None),
    identity_provider: IdentityProvider = Depends(get_identity_provider),
) -> Optional[Dict[str, Any]]:
    """Verified Firebase ID token claims. None when auth is disabled for the deployment."""
    if not settings.DELETE_REQUIRES_AUTH:
        return None

    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationError(
            "Authentication required. Send Firebase ID token in Authorization header: 'Bearer <token>'.",
            requires_reauth=False,
        )

    token = authorization.split("Bearer ", 1)[1].strip()
    claims = await identity_provider.verify_token(token)
    structlog.contextvars.bind_contextvars(user_id=claims.get("uid"))
    return claims
