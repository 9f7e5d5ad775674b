# library_sync/database/base.py
"""
SQLAlchemy base class and session helper.

Provides the declarative base for all models and an async session generator.
"""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import declarative_base

# Declarative base for all models
Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Yield an async database session from the global database service.

    Usage:
        async for session in get_db():
            ...

    Yields:
        AsyncSession: Async database session
    """
    from ..services.database_service import database_service

    async with database_service.get_session() as session:
        yield session
