from __future__ import annotations

from collections.abc import AsyncGenerator, Generator
from contextlib import asynccontextmanager, contextmanager

from loguru import logger
from sqlalchemy import Engine, create_engine
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session, sessionmaker

from config import get_settings
from src.db.models.base import Base

# ========================================
# Sync Support
# ========================================

_engine: Engine | None = None
_SessionLocal: sessionmaker | None = None


def get_engine() -> Engine:
    """Get or create the sync engine (CLI maintenance commands)."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine(
            get_sync_url(settings.database_url),
            echo=settings.log_level == "DEBUG",
            pool_pre_ping=True,
        )
    return _engine


def _get_session_factory() -> sessionmaker:
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(bind=get_engine(), autocommit=False, autoflush=False)
    return _SessionLocal


def get_sync_url(url: str) -> str:
    """Drop async drivers so the sync engine accepts an async-style URL."""
    return url.replace("+asyncpg://", "+psycopg2://", 1).replace("+aiosqlite://", "://", 1)


def get_async_url(url: str) -> str:
    """Convert a sync URL to its async driver (asyncpg, aiosqlite) when needed."""
    if url.startswith("postgresql+asyncpg://"):
        return url
    if url.startswith("postgresql+psycopg2://"):
        return url.replace("postgresql+psycopg2://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def init_db() -> None:
    """Initialize database tables (sync; `skill-tutor init-db`)."""
    Base.metadata.create_all(bind=get_engine())
    logger.info("Database tables initialized")


async def init_async_db(engine: AsyncEngine) -> None:
    """Create tables through an async engine (sqlite in tests, startup on a fresh database)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations."""
    session = _get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:  # Intentionally broad - rollback on any error before re-raising
        session.rollback()
        raise
    finally:
        session.close()


# ========================================
# Async Support
# ========================================

_async_engine: AsyncEngine | None = None
_AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


def get_async_engine() -> AsyncEngine:
    """Get or create async engine (lazy initialization)."""
    global _async_engine
    if _async_engine is None:
        settings = get_settings()
        _async_engine = create_async_engine(
            get_async_url(settings.database_url),
            echo=settings.log_level == "DEBUG",
            pool_pre_ping=True,
        )
    return _async_engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


def get_async_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create async session factory."""
    global _AsyncSessionLocal
    if _AsyncSessionLocal is None:
        _AsyncSessionLocal = create_session_factory(get_async_engine())
    return _AsyncSessionLocal


@asynccontextmanager
async def async_session_scope(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Provide an async transactional scope around a series of operations."""
    factory = factory or get_async_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:  # Intentionally broad - rollback on any error before re-raising
            await session.rollback()
            raise


async def dispose_engines() -> None:
    global _async_engine, _AsyncSessionLocal, _engine, _SessionLocal
    if _async_engine is not None:
        await _async_engine.dispose()
    if _engine is not None:
        _engine.dispose()
    _async_engine = _AsyncSessionLocal = _engine = _SessionLocal = None
