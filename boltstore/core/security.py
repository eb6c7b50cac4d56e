"""Password hashing (bcrypt) and access tokens (PyJWT HS256)."""

from datetime import UTC, datetime, timedelta
from typing import Any

import bcrypt
import jwt
import structlog

from boltstore.core.config import settings
from boltstore.core.errors import ValidationError

logger = structlog.get_logger(__name__)

_DURATION_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: str) -> int:
    """Convert '30s' / '15m' / '24h' / '7d' into seconds."""
    if not value or value[-1] not in _DURATION_UNITS or not value[:-1].isdigit():
        raise ValueError(f"Invalid duration: {value!r}")
    return int(value[:-1]) * _DURATION_UNITS[value[-1]]


def hash_password(password: str, rounds: int | None = None) -> str:
    if not password:
        raise ValidationError("Password cannot be empty")
    salt = bcrypt.gensalt(rounds=rounds or settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Constant-time check. Malformed hashes count as a mismatch."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        logger.warning("auth.password_hash_malformed")
        return False


def token_ttl_seconds() -> int:
    return parse_duration(settings.JWT_EXPIRES_IN)


def create_access_token(user_id: str, email: str, *, expires_in: int | None = None) -> str:
    now = datetime.now(UTC)
    payload = {
        "sub": str(user_id),
        "email": email,
        "iat": now,
        "exp": now + timedelta(seconds=expires_in if expires_in is not None else token_ttl_seconds()),
    }
    return jwt.encode(payload, settings.AUTH_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Return the claims of a valid token, or None when it is expired or forged."""
    try:
        payload = jwt.decode(
            token,
            settings.AUTH_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        logger.info("auth.token_expired")
        return None
    except jwt.InvalidTokenError as exc:
        logger.info("auth.token_invalid", error=str(exc))
        return None
    return payload
