"""ConversationRepository: project-scoped chats and similarity search.

A conversation is a row in `chats` with a project_id. Ownership always runs
through the project: `chats c JOIN projects p ... WHERE p.user_id = $n`.
Writes authorize-and-load first and then mutate inside one transaction, so a
failed ownership check never reaches the UPDATE/DELETE.
"""

from collections.abc import Mapping, Sequence
from typing import Any

import asyncpg
import structlog

from boltstore.core.constants import SimilaritySearch
from boltstore.core.db import Database, affected_rows
from boltstore.core.errors import ValidationError
from boltstore.core.vectors import to_vector_literal, validate_embedding
from boltstore.repositories.chat import ChatRepository, chat_from_row
from boltstore.repositories.common import OwnershipGuard, is_uuid, prepare_messages
from boltstore.repositories.project import DeleteResult

logger = structlog.get_logger(__name__)

CONVERSATION_NOT_FOUND = "Conversation not found or user does not have permission."
CONVERSATION_DELETE_FAILED = "Error deleting conversation."

CONVERSATION_COLUMNS = """
    c.id::text, c.user_id::text, c.project_id::text, c.description, c.metadata,
    c.embedding::text AS embedding, c.created_at, c.updated_at
"""


def distance_cutoff(similarity_threshold: float) -> float:
    """Cosine similarity threshold → maximum cosine distance (similarity = 1 - distance)."""
    if isinstance(similarity_threshold, bool) or not isinstance(similarity_threshold, (int, float)):
        raise ValidationError("similarity_threshold must be a number")
    if not SimilaritySearch.MIN_SIMILARITY <= similarity_threshold <= SimilaritySearch.MAX_SIMILARITY:
        raise ValidationError("similarity_threshold must be between -1.0 and 1.0")
    return 1.0 - float(similarity_threshold)


class ConversationRepository:
    def __init__(self, db: Database, chats: ChatRepository | None = None) -> None:
        self._db = db
        self._chats = chats or ChatRepository(db)
        self._guard = OwnershipGuard(db)

    async def _load(self, conversation_id: str, user_id: str, conn: asyncpg.Connection | None = None) -> dict | None:
        row = await self._db.fetchrow(
            f"""
            SELECT {CONVERSATION_COLUMNS}
            FROM chats c
            JOIN projects p ON p.id = c.project_id
            WHERE c.id = $1::uuid AND p.user_id = $2::uuid
            """,
            conversation_id,
            user_id,
            conn=conn,
        )
        if row is None:
            return None
        conversation = chat_from_row(row)
        conversation["messages"] = await self._chats.list_messages(conversation_id, conn=conn)
        return conversation

    async def create_conversation(
        self,
        user_id: str,
        project_id: str,
        initial_messages: Sequence[Mapping[str, Any]],
        description: str | None = None,
    ) -> dict | None:
        """Fails closed: returns None (and logs) when the project is not the caller's."""
        prepared = prepare_messages(initial_messages)
        async with self._db.transaction() as conn:
            if await self._guard.find_project(project_id, user_id, conn=conn) is None:
                logger.warning(
                    "conversations.create.project_not_owned",
                    user_id=user_id,
                    project_id=project_id,
                )
                return None
            chat = await self._chats.insert_chat(user_id, description, project_id=project_id, conn=conn)
            await self._chats.append_messages(chat["id"], prepared, conn=conn)
            conversation = await self._load(chat["id"], user_id, conn=conn)
        logger.info(
            "conversations.created",
            conversation_id=chat["id"],
            project_id=project_id,
            message_count=len(prepared),
        )
        return conversation

    async def get_conversation_by_id(self, conversation_id: str, user_id: str) -> dict | None:
        if not (is_uuid(conversation_id) and is_uuid(user_id)):
            return None
        return await self._load(conversation_id, user_id)

    async def get_conversations_by_project_id(self, project_id: str, user_id: str) -> list[dict]:
        if not (is_uuid(project_id) and is_uuid(user_id)):
            return []
        rows = await self._db.fetch(
            f"""
            SELECT {CONVERSATION_COLUMNS}
            FROM chats c
            JOIN projects p ON p.id = c.project_id
            WHERE c.project_id = $1::uuid AND p.user_id = $2::uuid
            ORDER BY c.updated_at DESC, c.id ASC
            """,
            project_id,
            user_id,
        )
        conversations = [chat_from_row(r) for r in rows]
        messages = await self._chats.list_messages_for_chats([c["id"] for c in conversations])
        for conversation in conversations:
            conversation["messages"] = messages.get(conversation["id"], [])
        return conversations

    async def update_conversation_messages(
        self,
        conversation_id: str,
        user_id: str,
        messages: Sequence[Mapping[str, Any]],
    ) -> dict | None:
        """Replace the whole message list. Individual messages are never edited."""
        prepared = prepare_messages(messages)
        async with self._db.transaction() as conn:
            if await self._guard.find_conversation(conversation_id, user_id, conn=conn) is None:
                return None
            # Row lock first: concurrent replaces and appends on this chat queue here.
            await self._db.execute(
                "UPDATE chats SET updated_at = NOW() WHERE id = $1::uuid",
                conversation_id,
                conn=conn,
            )
            await self._chats.delete_messages(conversation_id, conn=conn)
            await self._chats.append_messages(conversation_id, prepared, conn=conn)
            conversation = await self._load(conversation_id, user_id, conn=conn)
        logger.info(
            "conversations.messages_replaced",
            conversation_id=conversation_id,
            message_count=len(prepared),
        )
        return conversation

    async def update_conversation_embedding(
        self,
        conversation_id: str,
        user_id: str,
        embedding: Sequence[float],
    ) -> dict | None:
        literal = to_vector_literal(validate_embedding(embedding))
        async with self._db.transaction() as conn:
            if await self._guard.find_conversation(conversation_id, user_id, conn=conn) is None:
                return None
            await self._chats.update_embedding(conversation_id, literal, conn=conn)
            conversation = await self._load(conversation_id, user_id, conn=conn)
        logger.info("conversations.embedding_updated", conversation_id=conversation_id)
        return conversation

    async def delete_conversation(self, conversation_id: str, user_id: str) -> DeleteResult:
        not_found = DeleteResult(False, CONVERSATION_NOT_FOUND)
        if not (is_uuid(conversation_id) and is_uuid(user_id)):
            return not_found
        try:
            async with self._db.transaction() as conn:
                if await self._guard.find_conversation(conversation_id, user_id, conn=conn) is None:
                    return not_found
                status = await self._db.execute(
                    "DELETE FROM chats WHERE id = $1::uuid",
                    conversation_id,
                    conn=conn,
                )
        except asyncpg.PostgresError:
            logger.exception("conversations.delete.failed", conversation_id=conversation_id)
            return DeleteResult(False, CONVERSATION_DELETE_FAILED)
        if affected_rows(status) == 0:
            return not_found
        logger.info("conversations.deleted", conversation_id=conversation_id)
        return DeleteResult(True)

    async def find_similar_conversations(
        self,
        project_id: str,
        query_embedding: Sequence[float],
        limit: int = SimilaritySearch.DEFAULT_LIMIT,
        similarity_threshold: float = SimilaritySearch.DEFAULT_THRESHOLD,
    ) -> list[dict]:
        """Rank the project's conversations by cosine similarity to `query_embedding`.

        `<=>` is pgvector's cosine distance, so similarity = 1 - distance and
        the filter keeps rows with distance < 1 - threshold. Returns [] when
        nothing clears the threshold. Callers check project ownership first.
        """
        max_distance = distance_cutoff(similarity_threshold)
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationError("limit must be a positive integer")
        if not is_uuid(project_id):
            return []
        literal = to_vector_literal(validate_embedding(query_embedding))

        rows = await self._db.fetch(
            """
            SELECT id::text, user_id::text, project_id::text, description, metadata,
                   embedding::text AS embedding, created_at, updated_at,
                   1 - (embedding <=> $1::vector) AS similarity
            FROM chats
            WHERE project_id = $2::uuid
              AND embedding IS NOT NULL
              AND (embedding <=> $1::vector) < $3
            ORDER BY embedding <=> $1::vector ASC, id ASC
            LIMIT $4
            """,
            literal,
            project_id,
            max_distance,
            limit,
        )
        results = []
        for row in rows:
            conversation = chat_from_row(row)
            conversation["similarity"] = float(row["similarity"])
            results.append(conversation)
        logger.info(
            "conversations.similarity_search",
            project_id=project_id,
            threshold=similarity_threshold,
            result_count=len(results),
        )
        return results
