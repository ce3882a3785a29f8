"""FastAPI dependency functions for permission checks."""

import logging

from fastapi import Depends

from src.exceptions import ForbiddenException
from src.modules.tenancy.auth import AuthenticatedUser, get_current_user

logger = logging.getLogger(__name__)


def require_permission(permission: str):
    """Factory that returns a FastAPI dependency checking a specific permission.

    Permissions come from the token's ``permissions`` claim; ``*`` and
    platform admins pass every check.
    """

    async def _check(
        user: AuthenticatedUser = Depends(get_current_user),
    ) -> AuthenticatedUser:
        if not user.has_permission(permission):
            logger.info("User %s denied permission %s", user.id, permission)
            raise ForbiddenException(f"Permission denied: {permission}")
        return user

    return _check
