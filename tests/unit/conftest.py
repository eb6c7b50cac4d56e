"""Shared fixtures: an in-memory stand-in for the Database gateway."""

import uuid
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest


class FakeDatabase:
    """Query methods are AsyncMocks; transaction() records commit vs rollback."""

    def __init__(self) -> None:
        self.conn = MagicMock(name="conn")
        self.execute = AsyncMock(return_value="UPDATE 1")
        self.fetch = AsyncMock(return_value=[])
        self.fetchrow = AsyncMock(return_value=None)
        self.fetchval = AsyncMock(return_value=None)
        self.executemany = AsyncMock(return_value=None)
        self.committed = 0
        self.rolled_back = 0

    @asynccontextmanager
    async def transaction(self):
        try:
            yield self.conn
        except BaseException:
            self.rolled_back += 1
            raise
        self.committed += 1


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def user_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def other_user_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def make_id():
    return lambda: str(uuid.uuid4())
