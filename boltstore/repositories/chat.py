"""ChatRepository: asyncpg queries for chats, messages and snapshots.

Rule: SQL only. Anything needing more than one statement under a single
transaction lives in ChatService, which passes its connection through the
`conn` keyword so every statement runs on the same connection.

Messages are ordered by an explicit per-chat `position`, never by timestamp:
copied messages keep their original created_at, so timestamps can tie.
"""

from collections.abc import Mapping, Sequence
from typing import Any

import asyncpg
import structlog

from boltstore.core.db import Database, affected_rows
from boltstore.core.vectors import to_vector_literal
from boltstore.repositories.common import (
    MESSAGE_COLUMNS,
    dump_json,
    is_uuid,
    record_to_dict,
)

logger = structlog.get_logger(__name__)

CHAT_COLUMNS = """
    id::text, user_id::text, project_id::text, description, metadata,
    embedding::text AS embedding, created_at, updated_at
"""

SNAPSHOT_COLUMNS = "id::text, chat_id::text, snapshot_data, created_at"


def chat_from_row(row: asyncpg.Record | Mapping[str, Any]) -> dict:
    return record_to_dict(row, json_fields=("metadata",))


def snapshot_from_row(row: asyncpg.Record | Mapping[str, Any]) -> dict:
    return record_to_dict(row, json_fields=("snapshot_data",))


class ChatRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    async def list_chats(self, user_id: str) -> list[dict]:
        """Chats without messages, most recently touched first."""
        if not is_uuid(user_id):
            return []
        rows = await self._db.fetch(
            f"""
            SELECT {CHAT_COLUMNS}
            FROM chats
            WHERE user_id = $1::uuid
            ORDER BY updated_at DESC, id ASC
            """,
            user_id,
        )
        return [chat_from_row(r) for r in rows]

    async def get_chat(
        self, chat_id: str, user_id: str, conn: asyncpg.Connection | None = None
    ) -> dict | None:
        if not (is_uuid(chat_id) and is_uuid(user_id)):
            return None
        row = await self._db.fetchrow(
            f"""
            SELECT {CHAT_COLUMNS}
            FROM chats
            WHERE id = $1::uuid AND user_id = $2::uuid
            """,
            chat_id,
            user_id,
            conn=conn,
        )
        return chat_from_row(row) if row else None

    async def insert_chat(
        self,
        user_id: str,
        description: str | None,
        metadata: Any = None,
        *,
        project_id: str | None = None,
        conn: asyncpg.Connection | None = None,
    ) -> dict:
        row = await self._db.fetchrow(
            f"""
            INSERT INTO chats (user_id, project_id, description, metadata)
            VALUES ($1::uuid, $2::uuid, $3, $4::jsonb)
            RETURNING {CHAT_COLUMNS}
            """,
            user_id,
            project_id,
            description,
            dump_json(metadata),
            conn=conn,
        )
        return chat_from_row(row)

    async def touch_chat(
        self,
        chat_id: str,
        user_id: str,
        *,
        description: str | None = None,
        metadata: Any = None,
        conn: asyncpg.Connection | None = None,
    ) -> bool:
        """Bump updated_at, replacing description/metadata only when given.

        The UPDATE also takes the row lock that serializes concurrent appends
        to the same chat.
        """
        status = await self._db.execute(
            """
            UPDATE chats
            SET description = COALESCE($3, description),
                metadata = COALESCE($4::jsonb, metadata),
                updated_at = NOW()
            WHERE id = $1::uuid AND user_id = $2::uuid
            """,
            chat_id,
            user_id,
            description,
            dump_json(metadata),
            conn=conn,
        )
        return affected_rows(status) > 0

    async def update_details(
        self,
        chat_id: str,
        user_id: str,
        changes: Mapping[str, Any],
        conn: asyncpg.Connection | None = None,
    ) -> bool:
        """Set description and/or metadata in a single UPDATE.

        Only keys present in `changes` are written; metadata is replaced
        wholesale and None clears it.
        """
        if not (is_uuid(chat_id) and is_uuid(user_id)):
            return False
        status = await self._db.execute(
            """
            UPDATE chats
            SET description = CASE WHEN $3::boolean THEN $4::text ELSE description END,
                metadata = CASE WHEN $5::boolean THEN $6::jsonb ELSE metadata END,
                updated_at = NOW()
            WHERE id = $1::uuid AND user_id = $2::uuid
            """,
            chat_id,
            user_id,
            "description" in changes,
            changes.get("description"),
            "metadata" in changes,
            dump_json(changes.get("metadata")),
            conn=conn,
        )
        return affected_rows(status) > 0

    async def update_embedding(
        self, chat_id: str, embedding_literal: str | None, conn: asyncpg.Connection | None = None
    ) -> dict | None:
        row = await self._db.fetchrow(
            f"""
            UPDATE chats
            SET embedding = $1::vector, updated_at = NOW()
            WHERE id = $2::uuid
            RETURNING {CHAT_COLUMNS}
            """,
            embedding_literal,
            chat_id,
            conn=conn,
        )
        return chat_from_row(row) if row else None

    async def delete_chat(self, chat_id: str, user_id: str) -> bool:
        """Messages and snapshots go with the chat via ON DELETE CASCADE."""
        if not (is_uuid(chat_id) and is_uuid(user_id)):
            return False
        status = await self._db.execute(
            "DELETE FROM chats WHERE id = $1::uuid AND user_id = $2::uuid",
            chat_id,
            user_id,
        )
        return affected_rows(status) > 0

    async def delete_chats_for_user(self, user_id: str, conn: asyncpg.Connection | None = None) -> int:
        status = await self._db.execute(
            "DELETE FROM chats WHERE user_id = $1::uuid",
            user_id,
            conn=conn,
        )
        return affected_rows(status)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def list_messages(self, chat_id: str, conn: asyncpg.Connection | None = None) -> list[dict]:
        rows = await self._db.fetch(
            f"""
            SELECT {MESSAGE_COLUMNS}
            FROM messages
            WHERE chat_id = $1::uuid
            ORDER BY position ASC
            """,
            chat_id,
            conn=conn,
        )
        return [record_to_dict(r) for r in rows]

    async def list_messages_for_chats(
        self, chat_ids: Sequence[str], conn: asyncpg.Connection | None = None
    ) -> dict[str, list[dict]]:
        """Messages for several chats in one round trip, grouped by chat id."""
        grouped: dict[str, list[dict]] = {chat_id: [] for chat_id in chat_ids}
        if not chat_ids:
            return grouped
        rows = await self._db.fetch(
            f"""
            SELECT {MESSAGE_COLUMNS}
            FROM messages
            WHERE chat_id = ANY($1::uuid[])
            ORDER BY chat_id, position ASC
            """,
            list(chat_ids),
            conn=conn,
        )
        for row in rows:
            message = record_to_dict(row)
            grouped.setdefault(message["chat_id"], []).append(message)
        return grouped

    async def append_messages(
        self,
        chat_id: str,
        messages: Sequence[tuple[str, str, str | None]],
        conn: asyncpg.Connection | None = None,
    ) -> int:
        """Append validated (role, content, vector literal) tuples after the last position."""
        if not messages:
            return 0
        next_position = await self._db.fetchval(
            "SELECT COALESCE(MAX(position) + 1, 0) FROM messages WHERE chat_id = $1::uuid",
            chat_id,
            conn=conn,
        )
        await self._db.executemany(
            """
            INSERT INTO messages (chat_id, position, role, content, embedding)
            VALUES ($1::uuid, $2, $3, $4, $5::vector)
            """,
            [
                (chat_id, next_position + offset, role, content, embedding)
                for offset, (role, content, embedding) in enumerate(messages)
            ],
            conn=conn,
        )
        return len(messages)

    async def copy_messages(
        self,
        chat_id: str,
        messages: Sequence[Mapping[str, Any]],
        conn: asyncpg.Connection | None = None,
    ) -> int:
        """Insert already-stored messages into another chat, keeping order and created_at."""
        if not messages:
            return 0
        await self._db.executemany(
            """
            INSERT INTO messages (chat_id, position, role, content, embedding, created_at)
            VALUES ($1::uuid, $2, $3, $4, $5::vector, $6)
            """,
            [
                (
                    chat_id,
                    position,
                    message["role"],
                    message["content"],
                    to_vector_literal(message["embedding"]) if message.get("embedding") is not None else None,
                    message.get("created_at"),
                )
                for position, message in enumerate(messages)
            ],
            conn=conn,
        )
        return len(messages)

    async def delete_messages(self, chat_id: str, conn: asyncpg.Connection | None = None) -> int:
        status = await self._db.execute(
            "DELETE FROM messages WHERE chat_id = $1::uuid",
            chat_id,
            conn=conn,
        )
        return affected_rows(status)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def latest_snapshot(self, chat_id: str, conn: asyncpg.Connection | None = None) -> dict | None:
        row = await self._db.fetchrow(
            f"""
            SELECT {SNAPSHOT_COLUMNS}
            FROM snapshots
            WHERE chat_id = $1::uuid
            ORDER BY created_at DESC, id DESC
            LIMIT 1
            """,
            chat_id,
            conn=conn,
        )
        return snapshot_from_row(row) if row else None

    async def list_snapshots(self, chat_id: str, conn: asyncpg.Connection | None = None) -> list[dict]:
        rows = await self._db.fetch(
            f"""
            SELECT {SNAPSHOT_COLUMNS}
            FROM snapshots
            WHERE chat_id = $1::uuid
            ORDER BY created_at DESC, id DESC
            """,
            chat_id,
            conn=conn,
        )
        return [snapshot_from_row(r) for r in rows]

    async def insert_snapshot(
        self, chat_id: str, snapshot_data: Any, conn: asyncpg.Connection | None = None
    ) -> dict:
        # clock_timestamp() so two snapshots in one transaction still order correctly.
        row = await self._db.fetchrow(
            f"""
            INSERT INTO snapshots (chat_id, snapshot_data, created_at)
            VALUES ($1::uuid, $2::jsonb, clock_timestamp())
            RETURNING {SNAPSHOT_COLUMNS}
            """,
            chat_id,
            dump_json(snapshot_data),
            conn=conn,
        )
        return snapshot_from_row(row)

    async def delete_snapshots(self, chat_id: str, conn: asyncpg.Connection | None = None) -> int:
        status = await self._db.execute(
            "DELETE FROM snapshots WHERE chat_id = $1::uuid",
            chat_id,
            conn=conn,
        )
        return affected_rows(status)
