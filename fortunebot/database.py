"""
database.py — SQLAlchemy 2.0 async engine and session factory.

This module owns ALL database connection infrastructure.
Nothing else in the codebase creates engines or sessions directly.

Usage in routes (via dependency injection):
    from fortunebot.database import get_db
    async def my_route(db: AsyncSession = Depends(get_db)): ...

Usage outside a request (the ledger append runs inside a webhook turn):
    from fortunebot.database import AsyncSessionLocal
    async with AsyncSessionLocal() as session: ...
"""
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from fortunebot.config import settings


class Base(DeclarativeBase):
    """
    SQLAlchemy declarative base.
    Defined here (not in models/) to prevent circular imports in alembic/env.py.
    """
    pass


async_engine = create_async_engine(
    settings.database_url,
    echo=False,               # SQL echo would log names and reports
    pool_size=5,
    max_overflow=10,
    pool_pre_ping=True,       # Detect and discard stale connections before each use
)

AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that yields an AsyncSession per request.
    Commits on success, rolls back on exception.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
