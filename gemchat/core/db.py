import ssl
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from .config import normalize_database_url

# Registers the tables on SQLModel.metadata
from . import models  # noqa: F401

logger = logging.getLogger(__name__)

TABLES = ("users", "chat_sessions", "messages", "artifacts")
INDEXES = ("idx_chat_sessions_user_id", "idx_messages_session_id", "idx_artifacts_message_id")


def _enable_sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


# ------------------------------------------------------------------------------
# Database Handle
# ------------------------------------------------------------------------------
class Database:
    """Explicit database handle: embedded SQLite file or hosted PostgreSQL

    The backend is picked from the URL scheme. Nothing connects until
    :meth:`open` is called, and :meth:`close` disposes the connection pool.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = normalize_database_url(url)
        self.echo = echo
        self._engine: Optional[AsyncEngine] = None

    @property
    def backend(self) -> str:
        return "sqlite" if make_url(self.url).get_backend_name() == "sqlite" else "postgresql"

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database is not open")
        return self._engine

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    def open(self) -> "Database":
        """Create the engine for the configured backend"""
        if self._engine is not None:
            return self
        try:
            if self.backend == "sqlite":
                self._engine = create_async_engine(self.url, echo=self.echo)
                event.listen(self._engine.sync_engine, "connect", _enable_sqlite_pragmas)
            else:
                url, connect_args = _postgres_connect_args(self.url)
                self._engine = create_async_engine(
                    url,
                    echo=self.echo,
                    pool_pre_ping=True,
                    pool_recycle=3600,
                    connect_args=connect_args,
                )
            logger.info(f"Opened {self.backend} database")
            return self
        except Exception as e:
            logger.error(f"Failed to open database: {e}")
            raise

    async def close(self):
        """Dispose the engine and its pooled connections"""
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        logger.info(f"Closed {self.backend} database")

    async def init_schema(self):
        """Create tables and indexes if they do not exist yet"""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)
            logger.info("Database schema initialized")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with AsyncSession(self.engine, expire_on_commit=False) as db_session:
            yield db_session

    async def __aenter__(self) -> "Database":
        return self.open()

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


def _postgres_connect_args(url: str):
    """asyncpg rejects libpq's sslmode query parameter; turn it into an ssl context"""
    parsed = make_url(url)
    sslmode = parsed.query.get("sslmode")
    if not sslmode:
        return url, {}
    parsed = parsed.difference_update_query(["sslmode", "channel_binding"])
    connect_args = {}
    if sslmode != "disable":
        connect_args["ssl"] = ssl.create_default_context()
    return parsed.render_as_string(hide_password=False), connect_args
