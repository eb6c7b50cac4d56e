"""Unit tests for ChatRepository message ordering and snapshot SQL."""

from datetime import UTC, datetime

import pytest

from boltstore.repositories.chat import ChatRepository


@pytest.mark.asyncio
async def test_append_messages_continues_after_last_position(fake_db, make_id) -> None:
    """New messages get consecutive positions after the current maximum."""
    chat_id = make_id()
    fake_db.fetchval.return_value = 4
    repo = ChatRepository(fake_db)

    count = await repo.append_messages(
        chat_id, [("user", "a", None), ("assistant", "b", "[0.5]")], conn=fake_db.conn
    )

    assert count == 2
    query, rows = fake_db.executemany.await_args.args
    assert "INSERT INTO messages" in query
    assert rows == [(chat_id, 4, "user", "a", None), (chat_id, 5, "assistant", "b", "[0.5]")]
    assert fake_db.executemany.await_args.kwargs["conn"] is fake_db.conn


@pytest.mark.asyncio
async def test_append_no_messages_is_a_no_op(fake_db, make_id) -> None:
    assert await ChatRepository(fake_db).append_messages(make_id(), []) == 0
    fake_db.fetchval.assert_not_awaited()


@pytest.mark.asyncio
async def test_copy_messages_renumbers_and_keeps_timestamps(fake_db, make_id) -> None:
    """Copies start at position 0 and keep the original created_at."""
    chat_id = make_id()
    stamp = datetime(2024, 1, 1, tzinfo=UTC)
    messages = [
        {"id": make_id(), "position": 7, "role": "user", "content": "q", "embedding": None, "created_at": stamp},
        {"id": make_id(), "position": 8, "role": "assistant", "content": "a", "embedding": [1.0, 2.0], "created_at": stamp},
    ]

    await ChatRepository(fake_db).copy_messages(chat_id, messages)

    _, rows = fake_db.executemany.await_args.args
    assert rows == [
        (chat_id, 0, "user", "q", None, stamp),
        (chat_id, 1, "assistant", "a", "[1.0,2.0]", stamp),
    ]


@pytest.mark.asyncio
async def test_list_messages_orders_by_position(fake_db, make_id) -> None:
    fake_db.fetch.return_value = [
        {"id": "m1", "chat_id": "c", "position": 0, "role": "user", "content": "x", "embedding": None, "created_at": None}
    ]
    messages = await ChatRepository(fake_db).list_messages(make_id())
    assert "ORDER BY position ASC" in fake_db.fetch.await_args.args[0]
    assert messages[0]["embedding"] is None


@pytest.mark.asyncio
async def test_touch_chat_reports_missing_row(fake_db, make_id) -> None:
    fake_db.execute.return_value = "UPDATE 0"
    assert await ChatRepository(fake_db).touch_chat(make_id(), make_id()) is False


@pytest.mark.asyncio
async def test_update_details_writes_both_fields_in_one_statement(fake_db, make_id) -> None:
    chat_id, user_id = make_id(), make_id()

    updated = await ChatRepository(fake_db).update_details(
        chat_id, user_id, {"description": "Renamed", "metadata": {"k": 1}}, conn=fake_db.conn
    )

    assert updated is True
    fake_db.execute.assert_awaited_once()
    args = fake_db.execute.await_args.args
    assert args[1:] == (chat_id, user_id, True, "Renamed", True, '{"k": 1}')
    assert fake_db.execute.await_args.kwargs["conn"] is fake_db.conn


@pytest.mark.asyncio
async def test_update_details_leaves_absent_fields_alone(fake_db, make_id) -> None:
    """Only metadata given: the description flag is off so the column keeps its value."""
    await ChatRepository(fake_db).update_details(make_id(), make_id(), {"metadata": None})

    _, _, _, set_description, _, set_metadata, metadata = fake_db.execute.await_args.args
    assert set_description is False
    assert set_metadata is True
    assert metadata is None


@pytest.mark.asyncio
async def test_update_details_malformed_id_skips_query(fake_db, make_id) -> None:
    assert await ChatRepository(fake_db).update_details("nope", make_id(), {"description": "x"}) is False
    fake_db.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_latest_snapshot_decodes_json(fake_db, make_id) -> None:
    chat_id = make_id()
    fake_db.fetchrow.return_value = {
        "id": make_id(),
        "chat_id": chat_id,
        "snapshot_data": '{"files": {"a.ts": "x"}}',
        "created_at": None,
    }
    snapshot = await ChatRepository(fake_db).latest_snapshot(chat_id)
    assert snapshot["snapshot_data"] == {"files": {"a.ts": "x"}}
    assert "ORDER BY created_at DESC, id DESC" in fake_db.fetchrow.await_args.args[0]


@pytest.mark.asyncio
async def test_delete_chats_for_user_returns_count(fake_db, user_id) -> None:
    fake_db.execute.return_value = "DELETE 3"
    assert await ChatRepository(fake_db).delete_chats_for_user(user_id) == 3
