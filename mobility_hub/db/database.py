"""
Database Connection and Session Management
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from mobility_hub.core.config import settings

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True
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


def get_session_factory() -> async_sessionmaker:
    """
    Dependency for services that open their own units of work.

    Conversation handling and admin milestones commit in several short
    transactions (dedup claim, session CAS, outbox delivery), some of them
    after the response was sent, so they take the factory rather than a
    request-scoped session.
    """
    return AsyncSessionLocal


@asynccontextmanager
async def get_task_session_factory() -> AsyncIterator[async_sessionmaker]:
    """
    Fresh engine and session factory for a Celery task.

    Module-level engines are bound to the loop that created them; every task
    runs on a new event loop, so it gets its own engine.
    """
    task_engine = create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10
    )
    try:
        yield async_sessionmaker(
            bind=task_engine,
            class_=AsyncSession,
            expire_on_commit=False
        )
    finally:
        await task_engine.dispose()


@asynccontextmanager
async def get_task_session() -> AsyncIterator[AsyncSession]:
    """Single session on a task-scoped engine"""
    async with get_task_session_factory() as factory:
        async with factory() as session:
            yield session
