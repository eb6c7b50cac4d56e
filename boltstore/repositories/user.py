"""UserRepository: asyncpg queries for the users table.

Lookups never raise on a miss; they return None. The only classified failure
is a duplicate email on insert, surfaced as ConflictError.
"""

import asyncpg
import structlog

from boltstore.core.db import Database
from boltstore.core.errors import ConflictError, ValidationError
from boltstore.repositories.common import is_uuid

logger = structlog.get_logger(__name__)

USER_COLUMNS = "id::text, email, password_hash, name, avatar_url, created_at, updated_at"


class UserRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def create_user(
        self,
        email: str,
        password_hash: str,
        name: str | None = None,
        avatar_url: str | None = None,
    ) -> dict:
        if not email or not password_hash:
            raise ValidationError("email and password_hash are required")
        try:
            row = await self._db.fetchrow(
                f"""
                INSERT INTO users (email, password_hash, name, avatar_url)
                VALUES ($1, $2, $3, $4)
                RETURNING {USER_COLUMNS}
                """,
                email,
                password_hash,
                name or None,
                avatar_url or None,
            )
        except asyncpg.UniqueViolationError:
            logger.info("users.create.duplicate_email")
            raise ConflictError("Email is already registered")
        logger.info("users.created", user_id=row["id"])
        return dict(row)

    async def get_user_by_email(self, email: str) -> dict | None:
        if not email:
            return None
        row = await self._db.fetchrow(
            f"SELECT {USER_COLUMNS} FROM users WHERE email = $1",
            email,
        )
        return dict(row) if row else None

    async def get_user_by_id(self, user_id: str) -> dict | None:
        if not is_uuid(user_id):
            return None
        row = await self._db.fetchrow(
            f"SELECT {USER_COLUMNS} FROM users WHERE id = $1::uuid",
            user_id,
        )
        return dict(row) if row else None
