"""Auth router: register, login, logout.

Tokens are returned in the body and also set as an httpOnly cookie so both
API clients and the browser frontend can authenticate.
"""

import structlog
from fastapi import APIRouter, Depends, Response, status

from boltstore.api.dependencies import get_user_repository
from boltstore.core.auth import public_user
from boltstore.core.config import settings
from boltstore.core.errors import AuthorizationError
from boltstore.core.security import create_access_token, hash_password, token_ttl_seconds, verify_password
from boltstore.models.schemas import AuthResponse, LoginRequest, RegisterRequest, UserResponse
from boltstore.repositories.user import UserRepository

logger = structlog.get_logger(__name__)
router = APIRouter()


def _set_auth_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.AUTH_COOKIE_NAME,
        value=token,
        max_age=token_ttl_seconds(),
        httponly=True,
        secure=settings.ENVIRONMENT == "production",
        samesite="lax",
        path="/",
    )


def _auth_response(response: Response, user: dict) -> AuthResponse:
    token = create_access_token(user["id"], user["email"])
    _set_auth_cookie(response, token)
    return AuthResponse(user=UserResponse(**public_user(user)), access_token=token)


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    response: Response,
    users: UserRepository = Depends(get_user_repository),
) -> AuthResponse:
    user = await users.create_user(
        email=body.email,
        password_hash=hash_password(body.password),
        name=body.name,
        avatar_url=body.avatar_url,
    )
    logger.info("auth.registered", user_id=user["id"])
    return _auth_response(response, user)


@router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginRequest,
    response: Response,
    users: UserRepository = Depends(get_user_repository),
) -> AuthResponse:
    user = await users.get_user_by_email(body.email)
    if user is None or not verify_password(body.password, user["password_hash"]):
        logger.info("auth.login_failed")
        raise AuthorizationError("Invalid email or password")
    logger.info("auth.logged_in", user_id=user["id"])
    return _auth_response(response, user)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout() -> Response:
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    response.delete_cookie(key=settings.AUTH_COOKIE_NAME, path="/")
    return response
