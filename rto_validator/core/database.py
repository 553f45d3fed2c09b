"""Async SQLAlchemy engine, session factory and database client."""

from collections.abc import AsyncGenerator
from typing import Any, Dict

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from rto_validator.core.config import settings
from rto_validator.utils.logging import get_logger

LOGGER = get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with driver-appropriate options.

    Pool sizing only applies to server databases. asyncpg gets its prepared
    statement cache disabled for PgBouncer compatibility.
    """
    kwargs: Dict[str, Any] = {"echo": echo, "future": True}

    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"timeout": 30}
    else:
        kwargs["pool_size"] = settings.db.pool_size
        kwargs["max_overflow"] = settings.db.max_overflow
        kwargs["pool_pre_ping"] = True
        if "+asyncpg" in url:
            kwargs["connect_args"] = {"statement_cache_size": 0}

    return create_async_engine(url, **kwargs)


engine = build_engine(settings.db.url, echo=settings.db.echo)

async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session for FastAPI dependencies."""
    async with async_session_maker() as session:
        yield session


class DatabaseClient:
    """Connectivity checks and schema bootstrap for an engine."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def ping(self) -> int:
        async with self.engine.connect() as conn:
            return await conn.scalar(text("SELECT 1"))

    async def connect(self) -> None:
        try:
            await self.ping()
        except Exception:
            LOGGER.error(f"Cannot reach {self.engine.dialect.name} database", exc_info=True)
            raise
        LOGGER.info(f"Connected to {self.engine.dialect.name} database")

    async def disconnect(self) -> None:
        await self.engine.dispose()
        LOGGER.info("Database engine disposed")

    async def create_tables(self) -> None:
        """Create missing tables. Migrations remain the source of truth in production."""
        from rto_validator.database import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        LOGGER.info(f"Ensured {len(Base.metadata.tables)} tables exist")

    async def health_check(self) -> Dict[str, Any]:
        try:
            value = await self.ping()
        except Exception as e:
            LOGGER.warning(f"Database health check failed: {e}")
            return {"connected": False, "database": self.engine.dialect.name, "error": str(e)}
        return {"connected": value == 1, "database": self.engine.dialect.name}


db_client = DatabaseClient(engine)


async def init_database(create_tables: bool = True) -> None:
    """Check connectivity and, when asked, create the schema."""
    await db_client.connect()
    if create_tables:
        await db_client.create_tables()


async def close_database() -> None:
    await db_client.disconnect()
