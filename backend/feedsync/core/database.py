from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from .config import settings

# Create declarative base
Base = declarative_base()


def create_engine(database_url: str = None) -> AsyncEngine:
    """Create the async engine for the local item store"""
    return create_async_engine(
        database_url or settings.DATABASE_URL,
        echo=settings.DEBUG,
        future=True,
        pool_pre_ping=True,  # Verify connections before using them
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Create an async session factory bound to the engine"""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_models(engine: AsyncEngine) -> None:
    """Create all tables and indexes that do not exist yet"""
    # Register models on the metadata before creating tables
    from feedsync import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


engine = create_engine()

# Create async session factory
AsyncSessionLocal = create_session_factory(engine)
