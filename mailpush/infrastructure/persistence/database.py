from sqlalchemy.ext.asyncio import (AsyncEngine, AsyncSession,
                                    async_sessionmaker, create_async_engine)
from sqlalchemy.orm import DeclarativeBase

from mailpush.infrastructure.config.settings import get_settings

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


class Base(DeclarativeBase):
    """Base class for all database models"""

    pass


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create the async engine, with pool settings only for server databases"""
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo)
    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        pool_recycle=3600,
        connect_args=(
            {"command_timeout": 60} if "postgresql" in database_url else {}
        ),
    )


def get_engine() -> AsyncEngine:
    """Engine is created once per process on first use"""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine(settings.database_url, settings.database_echo)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


async def create_tables() -> None:
    """Create missing tables (development only; production uses migrations)"""
    from mailpush.infrastructure.persistence import models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


async def get_db():
    """
    Database session dependency for read operations.
    Does not commit - read-only operations don't need commits.
    """
    async with get_session_factory()() as session:
        try:
            yield session
        finally:
            await session.close()
