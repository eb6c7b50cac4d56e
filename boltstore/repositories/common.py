"""Helpers shared by every repository: row decoding, message validation and
the authorize-and-load step used before any write.

Ownership is re-checked on every call and never cached between requests.
"""

import json
import uuid
from collections.abc import Mapping, Sequence
from typing import Any

import asyncpg

from boltstore.core.constants import MessageRoles
from boltstore.core.db import Database
from boltstore.core.errors import NotFoundError, ValidationError
from boltstore.core.vectors import optional_vector_literal, parse_vector

MESSAGE_COLUMNS = """
    id::text, chat_id::text, position, role, content,
    embedding::text AS embedding, created_at
"""


def is_uuid(value: Any) -> bool:
    if isinstance(value, uuid.UUID):
        return True
    if not isinstance(value, str):
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def canonical_uuid(value: Any) -> str | None:
    """Lowercase hyphenated form of a UUID, matching `id::text`; None if malformed."""
    if not is_uuid(value):
        return None
    return str(value if isinstance(value, uuid.UUID) else uuid.UUID(value))


def load_json(raw: Any) -> Any:
    """JSONB columns arrive as text from asyncpg unless a codec is registered."""
    if raw is None or isinstance(raw, (dict, list)):
        return raw
    if isinstance(raw, (str, bytes)):
        return json.loads(raw) if raw else None
    return raw


def dump_json(value: Any) -> str | None:
    return None if value is None else json.dumps(value)


def record_to_dict(row: asyncpg.Record | Mapping[str, Any], json_fields: Sequence[str] = ()) -> dict:
    data = dict(row)
    for field in json_fields:
        if field in data:
            data[field] = load_json(data[field])
    if "embedding" in data:
        data["embedding"] = parse_vector(data["embedding"])
    return data


def prepare_messages(messages: Sequence[Mapping[str, Any]]) -> list[tuple[str, str, str | None]]:
    """Validate incoming messages and return (role, content, vector literal) tuples.

    Raises ValidationError before anything touches the database.
    """
    prepared: list[tuple[str, str, str | None]] = []
    for index, message in enumerate(messages):
        if not isinstance(message, Mapping):
            raise ValidationError(f"messages[{index}] must be an object")
        role = message.get("role")
        content = message.get("content")
        if role not in MessageRoles.VALID:
            raise ValidationError(
                f"messages[{index}].role must be one of {sorted(MessageRoles.VALID)}"
            )
        if not isinstance(content, str):
            raise ValidationError(f"messages[{index}].content must be a string")
        prepared.append((role, content, optional_vector_literal(message.get("embedding"))))
    return prepared


class OwnershipGuard:
    """Authorize-and-load: returns the owned row, or None / NotFoundError.

    Rows only carry the keys needed to make the decision; callers that need
    the full entity fetch it afterwards, inside the same transaction when
    there is one.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    async def find_project(
        self, project_id: str, user_id: str, conn: asyncpg.Connection | None = None
    ) -> dict | None:
        if not (is_uuid(project_id) and is_uuid(user_id)):
            return None
        row = await self._db.fetchrow(
            """
            SELECT id::text, user_id::text
            FROM projects
            WHERE id = $1::uuid AND user_id = $2::uuid
            """,
            project_id,
            user_id,
            conn=conn,
        )
        return dict(row) if row else None

    async def find_chat(
        self, chat_id: str, user_id: str, conn: asyncpg.Connection | None = None
    ) -> dict | None:
        if not (is_uuid(chat_id) and is_uuid(user_id)):
            return None
        row = await self._db.fetchrow(
            """
            SELECT id::text, user_id::text, project_id::text
            FROM chats
            WHERE id = $1::uuid AND user_id = $2::uuid
            """,
            chat_id,
            user_id,
            conn=conn,
        )
        return dict(row) if row else None

    async def find_conversation(
        self, conversation_id: str, user_id: str, conn: asyncpg.Connection | None = None
    ) -> dict | None:
        """A conversation is a chat attached to a project the caller owns."""
        if not (is_uuid(conversation_id) and is_uuid(user_id)):
            return None
        row = await self._db.fetchrow(
            """
            SELECT c.id::text, c.project_id::text, p.user_id::text
            FROM chats c
            JOIN projects p ON p.id = c.project_id
            WHERE c.id = $1::uuid AND p.user_id = $2::uuid
            """,
            conversation_id,
            user_id,
            conn=conn,
        )
        return dict(row) if row else None

    async def require_chat(
        self, chat_id: str, user_id: str, conn: asyncpg.Connection | None = None
    ) -> dict:
        owned = await self.find_chat(chat_id, user_id, conn=conn)
        if owned is None:
            raise NotFoundError("Chat not found")
        return owned
