"""Query gateway: one explicitly constructed asyncpg pool per process.

The Database object is built in the FastAPI lifespan, stored on app.state and
handed to repositories at construction time. Nothing here is a module-level
singleton; tests build their own instance around a mock pool.
"""

import asyncio
import re
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any
from urllib.parse import urlparse

import asyncpg
import structlog
from sqlalchemy.orm import declarative_base

from boltstore.core.config import Settings, settings
from boltstore.core.constants import DatabasePool
from boltstore.core.errors import InfrastructureError

logger = structlog.get_logger(__name__)

# Declarative base for the ORM models Alembic reads; runtime queries never use it.
Base = declarative_base()


def _parse_db_url(url: str) -> dict[str, Any]:
    """Parse DATABASE_URL into asyncpg connection parameters.

    Strips SQLAlchemy driver prefixes (postgresql+asyncpg://, postgresql+psycopg://)
    so the same URL can be shared with Alembic.
    """
    normalised = re.sub(r"^postgresql\+\w+://", "postgresql://", url)
    parsed = urlparse(normalised)
    return {
        "host": parsed.hostname or "localhost",
        "port": parsed.port or 5432,
        "user": parsed.username or "boltdiy",
        "password": parsed.password or "boltdiy",
        "database": parsed.path.lstrip("/") or "boltdiy",
    }


def _preview_params(args: Sequence[Any]) -> list[str]:
    """Short, log-safe rendering of statement parameters."""
    preview: list[str] = []
    for arg in args:
        if isinstance(arg, (list, tuple)) and len(arg) > 8:
            preview.append(f"<sequence len={len(arg)}>")
            continue
        text = repr(arg)
        if text.startswith("'[") and len(text) > 80:
            preview.append(f"<vector literal chars={len(text)}>")
        else:
            preview.append(text if len(text) <= 80 else text[:77] + "...")
    return preview


def affected_rows(status: str | None) -> int:
    """Return N from an asyncpg command tag such as 'DELETE 3' or 'UPDATE 0'."""
    try:
        return int((status or "").split()[-1])
    except (IndexError, ValueError):
        return 0


class Database:
    def __init__(
        self,
        database_url: str,
        *,
        min_size: int,
        max_size: int,
        ssl: bool = False,
        acquire_timeout: float = 10.0,
        statement_timeout: float = 30.0,
    ) -> None:
        self._database_url = database_url
        self._min_size = min_size
        self._max_size = max_size
        self._ssl = ssl
        self._acquire_timeout = acquire_timeout
        self._statement_timeout = statement_timeout
        self._pool: asyncpg.Pool | None = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "Database":
        return cls(
            config.DATABASE_URL,
            min_size=config.DB_POOL_MIN,
            max_size=config.DB_POOL_MAX,
            ssl=config.DB_SSL,
            acquire_timeout=config.DB_POOL_ACQUIRE_TIMEOUT,
            statement_timeout=config.DB_STATEMENT_TIMEOUT,
        )

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise InfrastructureError("Database pool is not initialised")
        return self._pool

    async def init(self) -> None:
        """Create the pool. Safe to call more than once."""
        if self._pool is not None:
            return
        async with self._lock:
            if self._pool is not None:
                return
            db_params = _parse_db_url(self._database_url)
            logger.info(
                "db.pool.create",
                host=db_params["host"],
                port=db_params["port"],
                min_size=self._min_size,
                max_size=self._max_size,
            )
            self._pool = await asyncpg.create_pool(
                **db_params,
                min_size=self._min_size,
                max_size=self._max_size,
                ssl="require" if self._ssl else None,
                command_timeout=self._statement_timeout,
                max_inactive_connection_lifetime=DatabasePool.MAX_INACTIVE_CONNECTION_LIFETIME,
            )
            logger.info("db.pool.created", pool_size=self._pool.get_size())

    async def close(self) -> None:
        """Close the pool on application shutdown."""
        if self._pool is None:
            return
        logger.info("db.pool.closing", pool_size=self._pool.get_size())
        await self._pool.close()
        self._pool = None

    @asynccontextmanager
    async def connection(
        self, conn: asyncpg.Connection | None = None
    ) -> AsyncIterator[asyncpg.Connection]:
        """Yield `conn` when the caller is already inside a transaction, else acquire one."""
        if conn is not None:
            yield conn
            return
        async with self.pool.acquire(timeout=self._acquire_timeout) as acquired:
            yield acquired

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """BEGIN/COMMIT on a single acquired connection.

        Any exception, including cancellation, rolls back before the
        connection goes back to the pool.
        """
        async with self.pool.acquire(timeout=self._acquire_timeout) as conn:
            async with conn.transaction():
                yield conn

    async def _run(
        self,
        method: str,
        query: str,
        args: Sequence[Any],
        conn: asyncpg.Connection | None,
    ) -> Any:
        try:
            async with self.connection(conn) as active:
                return await getattr(active, method)(query, *args)
        except asyncpg.IntegrityConstraintViolationError as exc:
            # Callers classify these (duplicate email etc.) so keep them quiet.
            logger.warning(
                "db.query.constraint_violation",
                constraint=getattr(exc, "constraint_name", None),
                statement=" ".join(query.split())[:200],
            )
            raise
        except Exception as exc:
            logger.error(
                "db.query.failed",
                statement=" ".join(query.split())[:500],
                params=_preview_params(args),
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise

    async def execute(self, query: str, *args: Any, conn: asyncpg.Connection | None = None) -> str:
        return await self._run("execute", query, args, conn)

    async def fetch(
        self, query: str, *args: Any, conn: asyncpg.Connection | None = None
    ) -> list[asyncpg.Record]:
        return await self._run("fetch", query, args, conn)

    async def fetchrow(
        self, query: str, *args: Any, conn: asyncpg.Connection | None = None
    ) -> asyncpg.Record | None:
        return await self._run("fetchrow", query, args, conn)

    async def fetchval(self, query: str, *args: Any, conn: asyncpg.Connection | None = None) -> Any:
        return await self._run("fetchval", query, args, conn)

    async def executemany(
        self,
        query: str,
        rows: Sequence[Sequence[Any]],
        conn: asyncpg.Connection | None = None,
    ) -> None:
        try:
            async with self.connection(conn) as active:
                await active.executemany(query, rows)
        except Exception as exc:
            logger.error(
                "db.query.failed",
                statement=" ".join(query.split())[:500],
                row_count=len(rows),
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise
