"""Tenancy module: caller identity, organization scoping and permissions."""

from src.modules.tenancy.auth import AuthenticatedUser, get_current_user
from src.modules.tenancy.dependencies import require_permission

__all__ = [
    "AuthenticatedUser",
    "get_current_user",
    "require_permission",
]
