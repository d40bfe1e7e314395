"""
Database Access Module

One small interface over the relational store: ``query`` (all rows),
``query_one`` (first row or None) and ``execute`` (affected row count),
plus ``transaction()`` which exposes the same three calls on a single
connection that commits on exit and rolls back on error.

The backend is chosen by the SQLAlchemy URL in ``Settings.database_url``
(``sqlite+aiosqlite://`` or ``postgresql+asyncpg://``). SQL is written with
named ``:param`` placeholders and restricted to syntax both engines accept
(``ON CONFLICT``, ``RETURNING``, ``CURRENT_TIMESTAMP``).
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from review_dashboard.database.schema import metadata
from review_dashboard.logging_config import get_logger

logger = get_logger(__name__)

Row = Dict[str, Any]
Params = Optional[Mapping[str, Any]]


class DatabaseError(Exception):
    """Raised when the database is used before connect() or after close()."""
    pass


class Executor:
    """query/query_one/execute bound to one open connection."""

    def __init__(self, conn: AsyncConnection):
        self._conn = conn

    async def query(self, sql: str, params: Params = None) -> List[Row]:
        result = await self._conn.execute(text(sql), dict(params or {}))
        return [dict(row) for row in result.mappings().all()]

    async def query_one(self, sql: str, params: Params = None) -> Optional[Row]:
        result = await self._conn.execute(text(sql), dict(params or {}))
        row = result.mappings().first()
        return dict(row) if row is not None else None

    async def execute(self, sql: str, params: Params = None) -> int:
        result = await self._conn.execute(text(sql), dict(params or {}))
        return result.rowcount


class Database:
    """
    Explicitly constructed store handle.

    Created and connected in the application lifespan, passed to the
    stores that need it, and closed at shutdown.

    Usage:
        db = Database("sqlite+aiosqlite:///./database.sqlite")
        await db.connect()
        rows = await db.query("SELECT * FROM projects")
        await db.close()
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.echo = echo
        self._engine: Optional[AsyncEngine] = None

    @property
    def backend(self) -> str:
        """Dialect name, e.g. 'sqlite' or 'postgresql'."""
        return self.url.split(":", 1)[0].split("+", 1)[0]

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise DatabaseError("Database is not connected")
        return self._engine

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    async def connect(self) -> None:
        """Create the engine and make sure the schema exists."""
        if self._engine is not None:
            return

        kwargs: Dict[str, Any] = {"echo": self.echo}
        if self.backend == "sqlite":
            # Wait on SQLite's file lock instead of failing immediately
            kwargs["connect_args"] = {"timeout": 30}
        else:
            kwargs["pool_pre_ping"] = True

        self._engine = create_async_engine(self.url, **kwargs)

        async with self._engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

        logger.info("Database connected", backend=self.backend)

    async def close(self) -> None:
        """Dispose of the engine and its connection pool."""
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        logger.info("Database connection closed", backend=self.backend)

    async def ping(self) -> bool:
        """Run a trivial statement; used by the readiness check."""
        try:
            row = await self.query_one("SELECT 1 AS ok")
        except (DatabaseError, SQLAlchemyError, OSError) as e:
            logger.warning("Database ping failed", error=str(e))
            return False
        return bool(row and row["ok"] == 1)

    async def query(self, sql: str, params: Params = None) -> List[Row]:
        async with self.engine.begin() as conn:
            return await Executor(conn).query(sql, params)

    async def query_one(self, sql: str, params: Params = None) -> Optional[Row]:
        async with self.engine.begin() as conn:
            return await Executor(conn).query_one(sql, params)

    async def execute(self, sql: str, params: Params = None) -> int:
        async with self.engine.begin() as conn:
            return await Executor(conn).execute(sql, params)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Executor]:
        """
        Run several statements atomically.

        Usage:
            async with db.transaction() as tx:
                await tx.execute("DELETE FROM review_comments WHERE ai_review_id = :id", {"id": 1})
                await tx.execute("DELETE FROM ai_reviews WHERE id = :id", {"id": 1})
        """
        async with self.engine.begin() as conn:
            yield Executor(conn)
