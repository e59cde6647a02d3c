from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (AsyncEngine, AsyncSession,
                                    async_sessionmaker, create_async_engine)

from ..shared.models.base import Base
from ..shared.utils.logger import get_logger
from .config import Environment, settings

logger = get_logger(__name__)


def build_engine(url: str) -> AsyncEngine:
    if url.startswith("sqlite"):
        # aiosqlite: one file, no server-side pool tuning
        return create_async_engine(url)
    return create_async_engine(
        url,
        pool_size=20,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.DATABASE_URL)

AsyncSessionLocal = build_session_factory(engine)


@asynccontextmanager
async def get_db() -> AsyncIterator[AsyncSession]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db():
    if settings.ENVIRONMENT in (Environment.LOCAL, Environment.DEV):
        # Auto-create tables for local/dev only
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    else:
        # Staging/prod use migrations only
        logger.info("Skipping auto table creation outside local/dev")


async def check_connection() -> bool:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
            return True
    except Exception as e:
        logger.warning(f"Database health probe failed: {e}")
        return False
