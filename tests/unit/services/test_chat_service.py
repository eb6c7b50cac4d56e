"""Unit tests for ChatService lineage workflows and snapshots."""

from unittest.mock import AsyncMock

import pytest

from boltstore.core.errors import NotFoundError, TransactionFailure, ValidationError
from boltstore.repositories.chat import ChatRepository
from boltstore.services.chat import ChatService, copy_description, fork_description, fork_prefix


def _service(fake_db) -> tuple[ChatService, AsyncMock]:
    chats = AsyncMock(spec=ChatRepository)
    return ChatService(fake_db, chats=chats), chats


def _messages(make_id, count: int) -> list[dict]:
    return [
        {"id": make_id(), "position": i, "role": "user" if i % 2 == 0 else "assistant", "content": f"m{i}"}
        for i in range(count)
    ]


def _original(chat_id: str, description: str | None = "Todo app") -> dict:
    return {
        "id": chat_id,
        "project_id": None,
        "description": description,
        "metadata": {"model": "gpt"},
    }


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def test_fork_prefix_includes_the_fork_message(make_id) -> None:
    messages = _messages(make_id, 4)
    assert fork_prefix(messages, messages[1]["id"]) == messages[:2]


def test_fork_prefix_matches_any_uuid_spelling(make_id) -> None:
    messages = _messages(make_id, 3)
    assert fork_prefix(messages, messages[1]["id"].upper()) == messages[:2]
    assert fork_prefix(messages, "{" + messages[0]["id"] + "}") == messages[:1]


def test_fork_prefix_malformed_id_is_a_validation_error(make_id) -> None:
    with pytest.raises(ValidationError):
        fork_prefix(_messages(make_id, 2), "m-1")


def test_fork_prefix_unknown_message_is_a_validation_error(make_id) -> None:
    with pytest.raises(ValidationError):
        fork_prefix(_messages(make_id, 2), make_id())


def test_descriptions_for_copies_and_forks() -> None:
    assert copy_description("Todo app") == "Copy of Todo app"
    assert copy_description(None) == "Copied Chat"
    assert fork_description("Todo app", "m-1") == "Fork of Todo app (up to message m-1)"
    assert fork_description("", "m-1") == "Forked Chat (up to message m-1)"


# ---------------------------------------------------------------------------
# save_chat_messages / create_chat
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_save_without_chat_id_creates_chat(fake_db, user_id, make_id) -> None:
    service, chats = _service(fake_db)
    new_id = make_id()
    chats.insert_chat.return_value = {"id": new_id}

    chat_id = await service.save_chat_messages(user_id, [{"role": "user", "content": "hello"}], description="New")

    assert chat_id == new_id
    chats.insert_chat.assert_awaited_once_with(user_id, "New", None, conn=fake_db.conn)
    chats.append_messages.assert_awaited_once_with(new_id, [("user", "hello", None)], conn=fake_db.conn)
    assert fake_db.committed == 1


@pytest.mark.asyncio
async def test_save_to_missing_chat_rolls_back(fake_db, user_id, make_id) -> None:
    """Appending to a chat the caller does not own is NotFound and writes nothing."""
    service, chats = _service(fake_db)
    chats.touch_chat.return_value = False

    with pytest.raises(NotFoundError):
        await service.save_chat_messages(user_id, [{"role": "user", "content": "x"}], chat_id=make_id())

    chats.append_messages.assert_not_awaited()
    assert fake_db.rolled_back == 1
    assert fake_db.committed == 0


@pytest.mark.asyncio
async def test_save_validates_before_opening_a_transaction(fake_db, user_id) -> None:
    service, _ = _service(fake_db)
    with pytest.raises(ValidationError):
        await service.save_chat_messages(user_id, [])
    with pytest.raises(ValidationError):
        await service.save_chat_messages(user_id, [{"role": "narrator", "content": "x"}])
    with pytest.raises(ValidationError):
        await service.save_chat_messages("not-a-uuid", [{"role": "user", "content": "x"}])
    assert fake_db.committed == fake_db.rolled_back == 0


@pytest.mark.asyncio
async def test_create_chat_requires_description(fake_db, user_id) -> None:
    service, _ = _service(fake_db)
    with pytest.raises(ValidationError):
        await service.create_chat(user_id, None, [{"role": "user", "content": "x"}])


# ---------------------------------------------------------------------------
# duplicate_chat
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_duplicate_copies_messages_and_latest_snapshot(fake_db, user_id, make_id) -> None:
    service, chats = _service(fake_db)
    original_id, new_id = make_id(), make_id()
    messages = _messages(make_id, 3)
    chats.get_chat.return_value = _original(original_id)
    chats.list_messages.return_value = messages
    chats.insert_chat.return_value = {"id": new_id}
    chats.latest_snapshot.return_value = {"snapshot_data": {"files": {}}}

    result = await service.duplicate_chat(original_id, user_id)

    assert result == new_id
    chats.insert_chat.assert_awaited_once_with(
        user_id, "Copy of Todo app", {"model": "gpt"}, project_id=None, conn=fake_db.conn
    )
    chats.copy_messages.assert_awaited_once_with(new_id, messages, conn=fake_db.conn)
    chats.insert_snapshot.assert_awaited_once_with(new_id, {"files": {}}, conn=fake_db.conn)
    assert fake_db.committed == 1


@pytest.mark.asyncio
async def test_duplicate_rolls_back_when_message_copy_fails(fake_db, user_id, make_id) -> None:
    """A failure after the chat insert leaves no partial copy behind."""
    service, chats = _service(fake_db)
    original_id = make_id()
    chats.get_chat.return_value = _original(original_id)
    chats.list_messages.return_value = _messages(make_id, 2)
    chats.insert_chat.return_value = {"id": make_id()}
    chats.copy_messages.side_effect = RuntimeError("connection lost")

    with pytest.raises(TransactionFailure) as excinfo:
        await service.duplicate_chat(original_id, user_id)

    assert isinstance(excinfo.value.__cause__, RuntimeError)
    chats.insert_snapshot.assert_not_awaited()
    assert fake_db.rolled_back == 1
    assert fake_db.committed == 0


@pytest.mark.asyncio
async def test_duplicate_foreign_chat_is_not_found(fake_db, other_user_id, make_id) -> None:
    service, chats = _service(fake_db)
    chats.get_chat.return_value = None

    with pytest.raises(NotFoundError):
        await service.duplicate_chat(make_id(), other_user_id)

    chats.insert_chat.assert_not_awaited()


# ---------------------------------------------------------------------------
# fork_chat
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_fork_copies_prefix_without_snapshot(fake_db, user_id, make_id) -> None:
    service, chats = _service(fake_db)
    original_id, new_id = make_id(), make_id()
    messages = _messages(make_id, 5)
    fork_at = messages[2]["id"]
    chats.get_chat.return_value = _original(original_id)
    chats.list_messages.return_value = messages
    chats.insert_chat.return_value = {"id": new_id}

    result = await service.fork_chat(original_id, fork_at, user_id)

    assert result == new_id
    assert chats.insert_chat.await_args.args[1] == f"Fork of Todo app (up to message {fork_at})"
    chats.copy_messages.assert_awaited_once_with(new_id, messages[:3], conn=fake_db.conn)
    chats.latest_snapshot.assert_not_awaited()
    chats.insert_snapshot.assert_not_awaited()


@pytest.mark.asyncio
async def test_fork_accepts_uppercase_message_id(fake_db, user_id, make_id) -> None:
    """The fork point matches regardless of how the UUID is spelled."""
    service, chats = _service(fake_db)
    original_id, new_id = make_id(), make_id()
    messages = _messages(make_id, 3)
    fork_at = messages[1]["id"]
    chats.get_chat.return_value = _original(original_id)
    chats.list_messages.return_value = messages
    chats.insert_chat.return_value = {"id": new_id}

    assert await service.fork_chat(original_id, fork_at.upper(), user_id) == new_id

    assert chats.insert_chat.await_args.args[1] == f"Fork of Todo app (up to message {fork_at})"
    chats.copy_messages.assert_awaited_once_with(new_id, messages[:2], conn=fake_db.conn)
    assert fake_db.committed == 1


@pytest.mark.asyncio
async def test_fork_at_unknown_message_writes_nothing(fake_db, user_id, make_id) -> None:
    service, chats = _service(fake_db)
    chats.get_chat.return_value = _original(make_id())
    chats.list_messages.return_value = _messages(make_id, 2)

    with pytest.raises(ValidationError):
        await service.fork_chat(make_id(), make_id(), user_id)

    chats.insert_chat.assert_not_awaited()
    assert fake_db.rolled_back == 1


@pytest.mark.asyncio
async def test_fork_requires_message_id(fake_db, user_id, make_id) -> None:
    service, _ = _service(fake_db)
    with pytest.raises(ValidationError):
        await service.fork_chat(make_id(), "", user_id)


# ---------------------------------------------------------------------------
# delete / snapshots
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_delete_all_chat_data_returns_count(fake_db, user_id) -> None:
    service, chats = _service(fake_db)
    chats.delete_chats_for_user.return_value = 4
    assert await service.delete_all_chat_data_for_user(user_id) == 4
    chats.delete_chats_for_user.assert_awaited_once_with(user_id, conn=fake_db.conn)


@pytest.mark.asyncio
async def test_get_snapshot_for_foreign_chat_returns_none(fake_db, other_user_id, make_id) -> None:
    """Ownership is checked before the snapshot is read."""
    service, chats = _service(fake_db)
    fake_db.fetchrow.return_value = None

    assert await service.get_snapshot(make_id(), other_user_id) is None
    chats.latest_snapshot.assert_not_awaited()


@pytest.mark.asyncio
async def test_set_snapshot_inserts_and_touches_chat(fake_db, user_id, make_id) -> None:
    service, chats = _service(fake_db)
    chat_id = make_id()
    fake_db.fetchrow.return_value = {"id": chat_id, "user_id": user_id, "project_id": None}
    chats.insert_snapshot.return_value = {"id": make_id(), "chat_id": chat_id, "snapshot_data": {"a": 1}}

    snapshot = await service.set_snapshot(chat_id, {"a": 1}, user_id)

    assert snapshot["snapshot_data"] == {"a": 1}
    chats.insert_snapshot.assert_awaited_once_with(chat_id, {"a": 1}, conn=fake_db.conn)
    chats.touch_chat.assert_awaited_once_with(chat_id, user_id, conn=fake_db.conn)
    assert fake_db.committed == 1


@pytest.mark.asyncio
async def test_set_snapshot_on_foreign_chat_is_not_found(fake_db, other_user_id, make_id) -> None:
    service, chats = _service(fake_db)
    fake_db.fetchrow.return_value = None

    with pytest.raises(NotFoundError):
        await service.set_snapshot(make_id(), {"a": 1}, other_user_id)

    chats.insert_snapshot.assert_not_awaited()
    assert fake_db.rolled_back == 1


@pytest.mark.asyncio
async def test_set_snapshot_requires_data(fake_db, user_id, make_id) -> None:
    service, _ = _service(fake_db)
    with pytest.raises(ValidationError):
        await service.set_snapshot(make_id(), None, user_id)


@pytest.mark.asyncio
async def test_list_snapshots_for_foreign_chat_is_empty(fake_db, other_user_id, make_id) -> None:
    service, chats = _service(fake_db)
    fake_db.fetchrow.return_value = None

    assert await service.list_snapshots(make_id(), other_user_id) == []
    chats.list_snapshots.assert_not_awaited()


@pytest.mark.asyncio
async def test_list_snapshots_returns_history(fake_db, user_id, make_id) -> None:
    service, chats = _service(fake_db)
    chat_id = make_id()
    fake_db.fetchrow.return_value = {"id": chat_id, "user_id": user_id, "project_id": None}
    chats.list_snapshots.return_value = [{"id": "s2"}, {"id": "s1"}]

    assert await service.list_snapshots(chat_id, user_id) == [{"id": "s2"}, {"id": "s1"}]
    chats.list_snapshots.assert_awaited_once_with(chat_id)


@pytest.mark.asyncio
async def test_delete_snapshot_removes_history_and_touches_chat(fake_db, user_id, make_id) -> None:
    service, chats = _service(fake_db)
    chat_id = make_id()
    fake_db.fetchrow.return_value = {"id": chat_id, "user_id": user_id, "project_id": None}
    chats.delete_snapshots.return_value = 2

    assert await service.delete_snapshot(chat_id, user_id) == 2
    chats.delete_snapshots.assert_awaited_once_with(chat_id, conn=fake_db.conn)
    chats.touch_chat.assert_awaited_once_with(chat_id, user_id, conn=fake_db.conn)
    assert fake_db.committed == 1


@pytest.mark.asyncio
async def test_delete_snapshot_on_foreign_chat_is_not_found(fake_db, other_user_id, make_id) -> None:
    service, chats = _service(fake_db)
    fake_db.fetchrow.return_value = None

    with pytest.raises(NotFoundError):
        await service.delete_snapshot(make_id(), other_user_id)

    chats.delete_snapshots.assert_not_awaited()
    chats.touch_chat.assert_not_awaited()
    assert fake_db.rolled_back == 1


# ---------------------------------------------------------------------------
# Chat-level updates
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_update_chat_writes_both_fields_with_one_call(fake_db, user_id, make_id) -> None:
    service, chats = _service(fake_db)
    chat_id = make_id()
    chats.update_details.return_value = True

    changes = {"description": "Renamed", "metadata": {"model": "x"}}
    assert await service.update_chat(chat_id, user_id, changes) is True
    chats.update_details.assert_awaited_once_with(chat_id, user_id, changes)


@pytest.mark.asyncio
async def test_update_chat_rejects_empty_and_unknown_changes(fake_db, user_id, make_id) -> None:
    service, chats = _service(fake_db)
    with pytest.raises(ValidationError):
        await service.update_chat(make_id(), user_id, {})
    with pytest.raises(ValidationError):
        await service.update_chat(make_id(), user_id, {"user_id": make_id()})
    chats.update_details.assert_not_awaited()


@pytest.mark.asyncio
async def test_update_chat_description_requires_a_value(fake_db, user_id, make_id) -> None:
    service, chats = _service(fake_db)
    with pytest.raises(ValidationError):
        await service.update_chat_description(make_id(), None, user_id)
    chats.update_details.assert_not_awaited()


@pytest.mark.asyncio
async def test_update_chat_description_on_foreign_chat_is_false(fake_db, other_user_id, make_id) -> None:
    service, chats = _service(fake_db)
    chat_id = make_id()
    chats.update_details.return_value = False

    assert await service.update_chat_description(chat_id, "New", other_user_id) is False
    chats.update_details.assert_awaited_once_with(chat_id, other_user_id, {"description": "New"})


@pytest.mark.asyncio
async def test_update_chat_metadata_can_clear_it(fake_db, user_id, make_id) -> None:
    """None is a real value for metadata: it clears the column."""
    service, chats = _service(fake_db)
    chat_id = make_id()
    chats.update_details.return_value = True

    assert await service.update_chat_metadata(chat_id, None, user_id) is True
    chats.update_details.assert_awaited_once_with(chat_id, user_id, {"metadata": None})
