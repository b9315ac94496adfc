"""Async SQLAlchemy engine and session factory.

Usage in stores:
    from codedrop.database import async_session

    async with async_session() as db:
        result = await db.execute(select(FileRecord))
        return result.scalars().all()
"""
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from codedrop.config import settings


def build_engine(url: str) -> AsyncEngine:
    """Create an engine, skipping pool sizing for SQLite which does not use it."""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False)
    return create_async_engine(
        url,
        echo=False,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.DATABASE_URL)

async_session = build_session_factory(engine)
