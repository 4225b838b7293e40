"""Async SQLAlchemy engine for the signing key table."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from tessera.core.settings import DatabaseSettings
from tessera.db.models_keys import SigningKeyEntity


class _KeyDatabase:
    """Engine and session factory, created on first use."""

    engine: AsyncEngine | None = None
    sessions: async_sessionmaker[AsyncSession] | None = None


_db = _KeyDatabase()


def _open(settings: DatabaseSettings) -> async_sessionmaker[AsyncSession]:
    if settings.url:
        engine = create_async_engine(settings.url)
    else:
        engine = create_async_engine(
            settings.async_url,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
        )
    _db.engine = engine
    _db.sessions = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    return _db.sessions


@asynccontextmanager
async def session_scope(
    settings: DatabaseSettings | None = None,
) -> AsyncIterator[AsyncSession]:
    """Yield a session that commits on success and rolls back on error."""
    sessions = _db.sessions or _open(settings or DatabaseSettings())
    async with sessions() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_schema(settings: DatabaseSettings | None = None) -> None:
    """Create the signing key table if it does not exist yet."""
    async with session_scope(settings) as session:
        conn = await session.connection()
        await conn.run_sync(SigningKeyEntity.metadata.create_all)


async def dispose_engine() -> None:
    """Close pooled connections; the next session opens a new engine."""
    if _db.engine is not None:
        await _db.engine.dispose()
    _db.engine = None
    _db.sessions = None


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency that yields an async database session."""
    async with session_scope() as session:
        yield session
