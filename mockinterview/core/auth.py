"""
Auth utilities for the mock interview API.

Validates Clerk JWTs and resolves the caller to a synced User.
Falls back to the X-User-Id header when AUTH_ALLOW_USER_HEADER is enabled (tests).
"""
from fastapi import Header, Request
from typing import Optional
import logging

import jwt

from mockinterview.core.clerk_auth import verify_jwt_token, identity_from_claims
from mockinterview.core.config import settings
from mockinterview.core.errors import UnauthorizedError
from mockinterview.features.users.service import sync_user
from mockinterview.models.user import Identity, User

logger = logging.getLogger(__name__)


def resolve_identity(request: Request, x_user_id: Optional[str] = None) -> Optional[Identity]:
    """
    Resolve the caller identity from the request, or None.

    Priority:
    1. Clerk JWT from Authorization header
    2. X-User-Id header (only when AUTH_ALLOW_USER_HEADER is set)

    An Authorization header carrying an invalid token never falls through
    to the header path.
    """
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        try:
            claims = verify_jwt_token(token)
            return identity_from_claims(claims)
        except jwt.ExpiredSignatureError:
            raise UnauthorizedError("Token expired", code="token_expired")
        except jwt.PyJWTError as e:
            logger.debug(f"Invalid token: {e}")
            raise UnauthorizedError("Invalid token", code="invalid_token")

    if x_user_id and settings.AUTH_ALLOW_USER_HEADER:
        email = request.headers.get("X-User-Email")
        return Identity(id=x_user_id, email=email)

    return None


async def get_current_user(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Test-only user ID"),
) -> User:
    """
    FastAPI dependency: resolve and sync the authenticated user.

    Raises:
        UnauthorizedError (401): no resolvable identity
    """
    identity = resolve_identity(request, x_user_id)
    if identity is None:
        raise UnauthorizedError("Missing Authorization (Bearer JWT)")

    user = sync_user(identity)
    request.state.user_id = user.id
    return user
