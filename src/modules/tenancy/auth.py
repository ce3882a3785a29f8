"""Bearer-token authentication for the billing API.

The token identifies the caller, the organization (gym) they act for and the
invoice permissions they hold.  Handlers never take an organization id from
the request; every query is scoped to ``AuthenticatedUser.organization_id``.
"""

import logging
import uuid
from dataclasses import dataclass, field

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from src.config import settings
from src.exceptions import UnauthorizedException

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)

WILDCARD_PERMISSION = "*"


@dataclass(frozen=True)
class AuthenticatedUser:
    """Caller identity taken from verified token claims."""

    id: uuid.UUID
    email: str
    organization_id: uuid.UUID
    role: str
    permissions: frozenset[str] = field(default_factory=frozenset)
    is_platform_admin: bool = False

    def has_permission(self, permission: str) -> bool:
        if self.is_platform_admin or WILDCARD_PERMISSION in self.permissions:
            return True
        return permission in self.permissions


def _decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        logger.warning("JWT validation failed: %s", exc)
        raise UnauthorizedException("Invalid or expired token") from exc


def _user_from_claims(claims: dict) -> AuthenticatedUser:
    """Map token claims onto an AuthenticatedUser.

    ``sub``, ``email`` and ``org_id`` are required; ``role`` defaults to
    STAFF and a missing ``permissions`` claim grants nothing.
    """
    try:
        return AuthenticatedUser(
            id=uuid.UUID(claims["sub"]),
            email=claims["email"],
            organization_id=uuid.UUID(claims["org_id"]),
            role=claims.get("role", "STAFF"),
            permissions=frozenset(claims.get("permissions") or ()),
            is_platform_admin=bool(claims.get("is_platform_admin", False)),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise UnauthorizedException("Token is missing required claims") from exc


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> AuthenticatedUser:
    """FastAPI dependency resolving the caller from the Authorization header."""
    if credentials is None:
        raise UnauthorizedException("Authentication required")

    user = _user_from_claims(_decode_token(credentials.credentials))
    request.state.user = user
    return user
