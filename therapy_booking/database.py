"""Database configuration and connection management."""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import Table, select, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from therapy_booking.config import settings


def get_async_database_url(url: str) -> str:
    """Convert a sync PostgreSQL/SQLite URL to its async driver form."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def create_engine_for_url(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with pool settings suited to the backend."""
    async_url = get_async_database_url(url)
    engine_kwargs: dict[str, Any] = {"echo": echo}

    if async_url.startswith("postgresql+asyncpg://"):
        engine_kwargs.update(
            pool_pre_ping=True,
            pool_size=10,
            max_overflow=20,
            pool_recycle=3600,
            connect_args={
                "server_settings": {
                    "application_name": settings.app_name,
                },
            },
        )

    return create_async_engine(async_url, **engine_kwargs)


engine: AsyncEngine = create_engine_for_url(settings.database_url, echo=settings.debug)

# Async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def insert_ignore(session: AsyncSession, table: Table, values: dict[str, Any]) -> bool:
    """
    Insert a row unless one with the same primary key exists.

    Returns:
        True if a row was inserted
    """
    dialect = session.get_bind().dialect.name

    if dialect == "postgresql":
        stmt = postgresql.insert(table).values(**values).on_conflict_do_nothing()
    elif dialect == "sqlite":
        stmt = sqlite.insert(table).values(**values).on_conflict_do_nothing()
    else:
        key = [column == values[column.name] for column in table.primary_key.columns]
        existing = await session.execute(select(*table.primary_key.columns).where(*key))
        if existing.first() is not None:
            return False
        stmt = table.insert().values(**values)

    result = await session.execute(stmt)
    return result.rowcount > 0


async def check_database_connection() -> bool:
    """Check if database connection is healthy."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
