"""
Database Connection and Session Management
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from inbox.core.config import settings


def _engine_options() -> dict:
    # SQLite (בדיקות/פיתוח מקומי) לא מקבל pool_size / max_overflow
    if settings.DATABASE_URL.startswith("sqlite"):
        return {}
    return {"pool_size": 5, "max_overflow": 10}


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True,
    **_engine_options(),
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False
)

Base = declarative_base()


async def get_db() -> AsyncIterator[AsyncSession]:
    """Dependency for getting database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def get_task_session() -> AsyncIterator[AsyncSession]:
    """
    Create a fresh database session for Celery tasks and startup jobs.

    The engine is bound to the current event loop, avoiding the
    "attached to a different loop" error that module-level engines raise
    when Celery workers create a new loop per task.
    """
    task_engine = create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        pool_pre_ping=True,
        **_engine_options(),
    )
    task_session_maker = async_sessionmaker(
        bind=task_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    try:
        async with task_session_maker() as session:
            yield session
    finally:
        await task_engine.dispose()
