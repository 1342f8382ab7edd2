"""SQLAlchemy 2.x async database setup using asyncpg and pgvector.

The engine is created lazily so importing the package never opens a
connection pool; connection credentials come from settings only.
"""

from __future__ import annotations

from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import settings


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    """Cached engine for the configured database URL."""
    if settings.db.url.startswith("sqlite"):
        return create_async_engine(settings.db.url, echo=settings.db.echo)
    return create_async_engine(
        settings.db.url,
        echo=settings.db.echo,
        pool_size=settings.db.pool_size,
        max_overflow=settings.db.max_overflow,
        pool_pre_ping=True,
    )


def get_session_factory(engine: AsyncEngine | None = None) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to ``engine`` (default: the configured engine)."""
    return async_sessionmaker(bind=engine or get_engine(), expire_on_commit=False, class_=AsyncSession)
