"""Database setup and session management."""

from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .config import get_settings


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


# Create sync engine for migrations (Alembic)
def get_sync_engine():
    """Get synchronous SQLAlchemy engine for migrations."""
    settings = get_settings()
    if not settings.db_url:
        raise ValueError("DB_URL not configured")

    # DB_URL names the psycopg (v3) driver; migrations run on it directly
    db_url = settings.db_url.replace("postgresql+asyncpg://", "postgresql+psycopg://")
    return create_engine(db_url, echo=settings.env == "dev")


# Create async engine for application (one pool per process)
@lru_cache
def get_async_engine():
    """Get asynchronous SQLAlchemy engine for application."""
    settings = get_settings()
    if not settings.db_url:
        raise ValueError("DB_URL not configured")

    # Convert to async driver
    db_url = settings.db_url.replace("postgresql+psycopg://", "postgresql+asyncpg://")
    return create_async_engine(db_url, echo=settings.env == "dev", pool_pre_ping=True)


def get_async_session_factory() -> async_sessionmaker:
    """Get async session factory for application."""
    engine = get_async_engine()
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


# Dependency for FastAPI
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency to get database session.

    Usage:
        @router.post("/search/chunks")
        async def search(db: AsyncSession = Depends(get_db)):
            ...
    """
    async_session = get_async_session_factory()
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


def dialect_name(db: AsyncSession) -> str:
    """Name of the SQL dialect the session is bound to ("postgresql", "sqlite")."""
    return db.get_bind().dialect.name


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def dialect_insert(db: AsyncSession, model: type[Base]):
    """INSERT construct supporting ``on_conflict_do_update`` for the bound dialect."""
    name = dialect_name(db)
    if name == "postgresql":
        return postgresql.insert(model)
    if name == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upserts are not supported on {name}")
