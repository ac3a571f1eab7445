"""
Database engine and session factory.

The engine is created by the process entry point and passed to the stores,
never held in a module global.
"""

import orjson
import structlog
from sqlalchemy import Insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .tables import Base

logger = structlog.get_logger()


def _json_serializer(obj) -> str:
    return orjson.dumps(obj).decode()


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine. Raw chain snapshots are serialized with orjson."""
    return create_async_engine(
        database_url,
        echo=echo,
        json_serializer=_json_serializer,
        json_deserializer=orjson.loads,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    """Create tables and indexes if they don't exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database initialized", url=engine.url.render_as_string(hide_password=True))


def dialect_insert(session: AsyncSession, table) -> Insert:
    """
    INSERT construct for the session's dialect.

    Both PostgreSQL and SQLite support ON CONFLICT, but through
    dialect-specific constructs.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(table)
    if dialect == "sqlite":
        return sqlite_insert(table)
    raise NotImplementedError(f"Upserts are not supported on dialect {dialect!r}")
