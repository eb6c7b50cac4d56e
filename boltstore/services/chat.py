"""ChatService: chat lineage workflows (save, duplicate, fork, bulk delete)
and snapshot handling.

Rule: no SQL here. Each multi-statement workflow opens exactly one
transaction and threads its connection through every repository call, so
BEGIN, every statement and COMMIT/ROLLBACK share one pooled connection.
Client errors (ValidationError, NotFoundError) propagate as themselves after
the rollback; anything else is logged and re-raised as TransactionFailure.

Concurrent forks/duplicates of the same chat are not fenced against each
other: both read the same committed state and both succeed.
"""

from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from typing import Any

import asyncpg
import structlog

from boltstore.core.constants import ChatDescriptions
from boltstore.core.db import Database
from boltstore.core.errors import BoltstoreError, NotFoundError, TransactionFailure, ValidationError
from boltstore.repositories.chat import ChatRepository
from boltstore.repositories.common import OwnershipGuard, canonical_uuid, is_uuid, prepare_messages

logger = structlog.get_logger(__name__)

CHAT_UPDATABLE_FIELDS = frozenset({"description", "metadata"})


def fork_prefix(messages: Sequence[Mapping[str, Any]], message_id: str) -> list[Mapping[str, Any]]:
    """Messages from the start up to and including the first one with `message_id`.

    Position in the stored order decides, never created_at: copied messages
    keep their timestamps, so several can share one. Ids compare in
    canonical form, so any spelling of a stored UUID matches.
    """
    target = canonical_uuid(message_id)
    if target is not None:
        for index, message in enumerate(messages):
            if canonical_uuid(message["id"]) == target:
                return list(messages[: index + 1])
    raise ValidationError("Message to fork at was not found in the chat")


def copy_description(description: str | None) -> str:
    if description:
        return f"{ChatDescriptions.COPY_PREFIX}{description}"
    return ChatDescriptions.COPY_DEFAULT


def fork_description(description: str | None, message_id: str) -> str:
    if description:
        return ChatDescriptions.FORK_TEMPLATE.format(description=description, message_id=message_id)
    return ChatDescriptions.FORK_DEFAULT.format(message_id=message_id)


class ChatService:
    def __init__(self, db: Database, chats: ChatRepository | None = None) -> None:
        self._db = db
        self._chats = chats or ChatRepository(db)
        self._guard = OwnershipGuard(db)

    @asynccontextmanager
    async def _transaction(self, action: str, **context: Any) -> AsyncIterator[asyncpg.Connection]:
        try:
            async with self._db.transaction() as conn:
                yield conn
        except BoltstoreError:
            raise
        except Exception as exc:
            logger.exception(f"chat.{action}.failed", **context)
            raise TransactionFailure(f"Failed to {action.replace('_', ' ')}") from exc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_all_chats(self, user_id: str) -> list[dict]:
        return await self._chats.list_chats(user_id)

    async def get_chat_details(
        self, chat_id: str, user_id: str, conn: asyncpg.Connection | None = None
    ) -> dict | None:
        """Chat plus its messages in stored order; None when missing or not owned."""
        chat = await self._chats.get_chat(chat_id, user_id, conn=conn)
        if chat is None:
            return None
        chat["messages"] = await self._chats.list_messages(chat_id, conn=conn)
        return chat

    # ------------------------------------------------------------------
    # Create / append
    # ------------------------------------------------------------------

    async def save_chat_messages(
        self,
        user_id: str,
        messages: Sequence[Mapping[str, Any]],
        chat_id: str | None = None,
        description: str | None = None,
        metadata: Any = None,
    ) -> str:
        """Create a chat (no chat_id) or append to one (chat_id given).

        Both paths share this routine so validation and timestamp touching
        are identical.
        """
        if not is_uuid(user_id):
            raise ValidationError("A valid user id is required")
        if not messages:
            raise ValidationError("Messages are required")
        prepared = prepare_messages(messages)

        async with self._transaction("save_chat_messages", user_id=user_id, chat_id=chat_id) as conn:
            if chat_id is None:
                chat = await self._chats.insert_chat(user_id, description, metadata, conn=conn)
                current_chat_id = chat["id"]
            else:
                if not is_uuid(chat_id) or not await self._chats.touch_chat(
                    chat_id, user_id, description=description, metadata=metadata, conn=conn
                ):
                    raise NotFoundError("Chat not found")
                current_chat_id = chat_id
            await self._chats.append_messages(current_chat_id, prepared, conn=conn)

        logger.info(
            "chat.messages_saved",
            chat_id=current_chat_id,
            created=chat_id is None,
            message_count=len(prepared),
        )
        return current_chat_id

    async def create_chat(
        self,
        user_id: str,
        description: str,
        messages: Sequence[Mapping[str, Any]],
        metadata: Any = None,
    ) -> str:
        if description is None:
            raise ValidationError("Description is required for a new chat")
        if not messages:
            raise ValidationError("Initial messages are required for a new chat")
        return await self.save_chat_messages(user_id, messages, None, description, metadata)

    # ------------------------------------------------------------------
    # Chat-level updates
    # ------------------------------------------------------------------

    async def update_chat(self, chat_id: str, user_id: str, changes: Mapping[str, Any]) -> bool:
        """Apply description and/or metadata changes as one UPDATE.

        Both fields land together or not at all. Returns False when the chat
        is missing or not owned.
        """
        unknown = set(changes) - CHAT_UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update chat fields: {', '.join(sorted(unknown))}")
        if not changes:
            raise ValidationError("Nothing to update")
        if "description" in changes and changes["description"] is None:
            raise ValidationError("Description is required")

        updated = await self._chats.update_details(chat_id, user_id, changes)
        if not updated:
            logger.warning("chat.update.not_found", chat_id=chat_id, user_id=user_id)
            return False
        logger.info("chat.updated", chat_id=chat_id, fields=sorted(changes))
        return True

    async def update_chat_description(self, chat_id: str, description: str, user_id: str) -> bool:
        return await self.update_chat(chat_id, user_id, {"description": description})

    async def update_chat_metadata(self, chat_id: str, metadata: Any, user_id: str) -> bool:
        return await self.update_chat(chat_id, user_id, {"metadata": metadata})

    async def delete_chat(self, chat_id: str, user_id: str) -> bool:
        deleted = await self._chats.delete_chat(chat_id, user_id)
        if deleted:
            logger.info("chat.deleted", chat_id=chat_id, user_id=user_id)
        return deleted

    # ------------------------------------------------------------------
    # Lineage
    # ------------------------------------------------------------------

    async def duplicate_chat(self, original_chat_id: str, user_id: str) -> str:
        """Copy the chat, all of its messages and its latest snapshot."""
        async with self._transaction("duplicate_chat", chat_id=original_chat_id, user_id=user_id) as conn:
            original = await self.get_chat_details(original_chat_id, user_id, conn=conn)
            if original is None:
                raise NotFoundError("Chat not found")

            new_chat = await self._chats.insert_chat(
                user_id,
                copy_description(original["description"]),
                original["metadata"],
                project_id=original.get("project_id"),
                conn=conn,
            )
            await self._chats.copy_messages(new_chat["id"], original["messages"], conn=conn)

            snapshot = await self._chats.latest_snapshot(original_chat_id, conn=conn)
            if snapshot is not None:
                await self._chats.insert_snapshot(new_chat["id"], snapshot["snapshot_data"], conn=conn)

        logger.info(
            "chat.duplicated",
            original_chat_id=original_chat_id,
            new_chat_id=new_chat["id"],
            message_count=len(original["messages"]),
            snapshot_copied=snapshot is not None,
        )
        return new_chat["id"]

    async def fork_chat(self, original_chat_id: str, message_id_to_fork_at: str, user_id: str) -> str:
        """New chat holding the messages up to and including `message_id_to_fork_at`.

        No snapshot is carried over: the original's latest snapshot reflects
        the end of the conversation, not the fork point.
        """
        if not message_id_to_fork_at:
            raise ValidationError("A message id to fork at is required")

        async with self._transaction("fork_chat", chat_id=original_chat_id, user_id=user_id) as conn:
            original = await self.get_chat_details(original_chat_id, user_id, conn=conn)
            if original is None:
                raise NotFoundError("Chat not found")
            prefix = fork_prefix(original["messages"], message_id_to_fork_at)
            fork_message_id = prefix[-1]["id"]

            new_chat = await self._chats.insert_chat(
                user_id,
                fork_description(original["description"], fork_message_id),
                original["metadata"],
                project_id=original.get("project_id"),
                conn=conn,
            )
            await self._chats.copy_messages(new_chat["id"], prefix, conn=conn)

        logger.info(
            "chat.forked",
            original_chat_id=original_chat_id,
            new_chat_id=new_chat["id"],
            fork_message_id=fork_message_id,
            message_count=len(prefix),
        )
        return new_chat["id"]

    async def delete_all_chat_data_for_user(self, user_id: str) -> int:
        """Delete every chat the user owns; messages and snapshots cascade. Irreversible."""
        if not is_uuid(user_id):
            raise ValidationError("A valid user id is required")
        async with self._transaction("delete_all_chat_data", user_id=user_id) as conn:
            deleted = await self._chats.delete_chats_for_user(user_id, conn=conn)
        logger.info("chat.deleted_all_for_user", user_id=user_id, chat_count=deleted)
        return deleted

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def get_snapshot(self, chat_id: str, user_id: str) -> dict | None:
        if await self._guard.find_chat(chat_id, user_id) is None:
            logger.warning("chat.snapshot.chat_not_owned", chat_id=chat_id, user_id=user_id)
            return None
        return await self._chats.latest_snapshot(chat_id)

    async def list_snapshots(self, chat_id: str, user_id: str) -> list[dict]:
        if await self._guard.find_chat(chat_id, user_id) is None:
            return []
        return await self._chats.list_snapshots(chat_id)

    async def set_snapshot(self, chat_id: str, snapshot_data: Any, user_id: str) -> dict:
        """Record a new snapshot; it becomes the chat's current one."""
        if snapshot_data is None:
            raise ValidationError("Snapshot data is required")
        async with self._transaction("set_snapshot", chat_id=chat_id, user_id=user_id) as conn:
            await self._guard.require_chat(chat_id, user_id, conn=conn)
            snapshot = await self._chats.insert_snapshot(chat_id, snapshot_data, conn=conn)
            await self._chats.touch_chat(chat_id, user_id, conn=conn)
        logger.info("chat.snapshot_set", chat_id=chat_id, snapshot_id=snapshot["id"])
        return snapshot

    async def delete_snapshot(self, chat_id: str, user_id: str) -> int:
        async with self._transaction("delete_snapshot", chat_id=chat_id, user_id=user_id) as conn:
            await self._guard.require_chat(chat_id, user_id, conn=conn)
            deleted = await self._chats.delete_snapshots(chat_id, conn=conn)
            await self._chats.touch_chat(chat_id, user_id, conn=conn)
        logger.info("chat.snapshot_deleted", chat_id=chat_id, deleted=deleted)
        return deleted
