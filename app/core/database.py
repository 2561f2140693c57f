"""Async engine, session factory and startup checks for the parse store.

The API, the Temporal activities and the maintenance workflow all share
``async_session_maker``; each unit of work opens its own session.
"""

from collections.abc import AsyncGenerator
from typing import Any, Dict

from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.core.config import settings
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

REQUIRED_TABLES = ("parses", "ephemeral_entries")


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def engine_options(database_url: str) -> Dict[str, Any]:
    """Pool and driver options for ``database_url``."""
    options: Dict[str, Any] = {"echo": settings.database_echo, "pool_pre_ping": True}
    if database_url.startswith("postgresql+asyncpg"):
        options.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            # PgBouncer in transaction mode cannot share prepared statements
            connect_args={"statement_cache_size": 0},
        )
    return options


engine = create_async_engine(settings.database_url, **engine_options(settings.database_url))

async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding one session per request."""
    async with async_session_maker() as session:
        yield session


class DatabaseClient:
    """Connectivity and schema checks used at startup and by the health endpoint."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def connect(self) -> None:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        LOGGER.info("Database connection successful")

    async def missing_tables(self) -> list[str]:
        async with self.engine.connect() as conn:
            existing = await conn.run_sync(lambda sync_conn: set(inspect(sync_conn).get_table_names()))
        return [table for table in REQUIRED_TABLES if table not in existing]

    async def ensure_schema(self) -> None:
        """Create the parse tables when migrations have not been applied yet."""
        missing = await self.missing_tables()
        if not missing:
            LOGGER.info("Database schema verified")
            return

        LOGGER.warning(
            f"Creating missing tables {missing}; run 'alembic upgrade head' to manage the schema"
        )
        # Importing registers the models on Base.metadata
        from app.database import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def health_check(self) -> dict:
        try:
            async with self.engine.connect() as conn:
                await conn.scalar(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            LOGGER.error("Database health check failed", extra={"error": str(e)})
            return {"status": "unhealthy", "error": str(e)}
        return {"status": "healthy"}

    async def disconnect(self) -> None:
        await self.engine.dispose()
        LOGGER.info("Database connection closed")


db_client = DatabaseClient(engine)


async def init_database(auto_migrate: bool = True) -> None:
    """Check connectivity and, with ``auto_migrate``, create missing tables."""
    LOGGER.info("Initializing database connection...")
    await db_client.connect()
    if auto_migrate:
        await db_client.ensure_schema()
    LOGGER.info("Database initialization completed")


async def close_database() -> None:
    LOGGER.info("Closing database connection...")
    await db_client.disconnect()
