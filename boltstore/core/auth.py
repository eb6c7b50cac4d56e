from typing import Any

import structlog
from fastapi import Depends, Header, Request

from boltstore.api.dependencies import get_user_repository
from boltstore.core.config import settings
from boltstore.core.errors import AuthorizationError
from boltstore.core.security import decode_access_token
from boltstore.repositories.user import UserRepository

logger = structlog.get_logger(__name__)


def public_user(user: dict[str, Any]) -> dict[str, Any]:
    """Strip the password hash before a user row leaves the server."""
    return {k: v for k, v in user.items() if k != "password_hash"}


def _extract_token(request: Request, authorization: str | None) -> str | None:
    if authorization:
        if not authorization.startswith("Bearer "):
            raise AuthorizationError("Invalid authorization format")
        return authorization.removeprefix("Bearer ").strip() or None
    return request.cookies.get(settings.AUTH_COOKIE_NAME)


async def get_current_user(
    request: Request,
    authorization: str | None = Header(None),
    users: UserRepository = Depends(get_user_repository),
) -> dict[str, Any]:
    """
    Resolve the caller from a Bearer token or the auth cookie.

    The header wins when both are present. The token's subject must still
    name an existing user, so deleted accounts stop working immediately.
    """
    token = _extract_token(request, authorization)
    if not token:
        raise AuthorizationError("Not authenticated")

    claims = decode_access_token(token)
    if claims is None:
        raise AuthorizationError("Invalid or expired token")

    user = await users.get_user_by_id(claims["sub"])
    if user is None:
        logger.warning("auth.user_not_found", user_id=claims["sub"])
        raise AuthorizationError("Invalid or expired token")

    structlog.contextvars.bind_contextvars(user_id=user["id"])
    return public_user(user)
