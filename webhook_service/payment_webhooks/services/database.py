"""
Database Service

Async SQLAlchemy engine wrapper exposing the two primitives the webhook
pipeline needs: a single-statement connection and an atomic transaction
that commits on success and rolls back on any exception.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import event, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from payment_webhooks.config import Settings
from payment_webhooks.models.tables import metadata
from payment_webhooks.utils.exceptions import DatabaseException
from payment_webhooks.utils.logging_config import get_logger

logger = get_logger(__name__)


def _enable_sqlite_immediate_transactions(engine: AsyncEngine) -> None:
    """
    Make SQLite take the write lock when a transaction begins.

    Without this two concurrent writers can each hold a read lock while
    waiting for the other, and SQLite aborts one with "database is locked".
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    """Owns the async engine for the relational store"""

    def __init__(self, url: str, echo: bool = False, **engine_kwargs):
        self.url = url
        self.is_sqlite = make_url(url).get_backend_name() == "sqlite"

        if self.is_sqlite:
            engine_kwargs.setdefault("connect_args", {"timeout": 15})

        self.engine: AsyncEngine = create_async_engine(
            url, echo=echo, pool_pre_ping=True, **engine_kwargs
        )

        if self.is_sqlite:
            _enable_sqlite_immediate_transactions(self.engine)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        if make_url(settings.database_url).get_backend_name() == "sqlite":
            return cls(settings.database_url, echo=settings.database_echo)

        return cls(
            settings.database_url,
            echo=settings.database_echo,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=settings.database_pool_timeout,
            pool_recycle=settings.database_pool_recycle,
        )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncConnection]:
        """
        Run a unit of work atomically.

        Commits when the block exits normally; rolls back and re-raises when
        it raises.
        """
        async with self.engine.begin() as connection:
            yield connection

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[AsyncConnection]:
        """Connection for read-only, single-statement work"""
        async with self.engine.connect() as connection:
            yield connection

    async def ping(self) -> bool:
        """
        Round-trip a trivial query.

        Raises:
            DatabaseException: If the database cannot be reached
        """
        try:
            async with self.connect() as connection:
                await connection.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise DatabaseException(
                f"Database ping failed: {e}", details={"backend": self.engine.dialect.name}
            ) from e
        return True

    async def create_tables(self) -> None:
        """Create the schema (local development and tests only)"""
        async with self.engine.begin() as connection:
            await connection.run_sync(metadata.create_all)
        logger.info("Database tables created", extra={"backend": self.engine.dialect.name})

    async def dispose(self) -> None:
        await self.engine.dispose()
        logger.info("Database engine disposed")

