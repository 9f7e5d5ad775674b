# library_sync/services/database_service.py
"""
Database service for async SQLAlchemy session management.

Provides a singleton service for managing database connections,
sessions, and health checks. Supports both SQLite (development)
and PostgreSQL (production).

Usage:
    from library_sync.services.database_service import database_service

    # Get async session (context manager)
    async with database_service.get_session() as session:
        result = await session.execute(select(Tag).where(Tag.slug == slug))
        tag = result.scalar_one_or_none()

    # Initialize database (create tables)
    await database_service.init_db()

    # Health check
    health = await database_service.health_check()
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..config import settings
from ..database.base import Base


def _resolve_database_url() -> str:
    return os.getenv("DATABASE_URL", settings.database_url)


def enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """
    Let SQLAlchemy emit BEGIN itself on SQLite connections.

    The sqlite3 driver defers BEGIN on its own, which breaks SAVEPOINT
    (session.begin_nested()). Tag and resource writes rely on savepoints.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


class DatabaseService:
    """
    Database service for managing async SQLAlchemy sessions.

    Supports both SQLite (development, tests) and PostgreSQL (production) with
    appropriate connection pooling and configuration.

    Methods:
        get_session(): Get async database session (context manager)
        init_db(): Initialize database (create all tables)
        health_check(): Check database connectivity and catalog sizes
        close(): Close database engine and connections
    """

    def __init__(self, database_url: Optional[str] = None):
        """
        Initialize database service.

        Args:
            database_url: Override for DATABASE_URL (used by tests and commands)
        """
        self._logger = logging.getLogger("library_sync.database")
        self._database_url = database_url or _resolve_database_url()
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None
        self._initialize_engine()

    @property
    def database_type(self) -> str:
        return "sqlite" if self._database_url.startswith("sqlite") else "postgresql"

    @property
    def engine(self) -> Optional[AsyncEngine]:
        return self._engine

    def _initialize_engine(self) -> None:
        """
        Initialize database engine based on the database URL.

        SQLite Configuration:
            - Uses aiosqlite async driver
            - check_same_thread=False for async support
            - Creates data directory if needed

        PostgreSQL Configuration:
            - Uses asyncpg async driver
            - Connection pooling: size=5, max_overflow=10
            - Pool pre-ping for connection health
            - Pool recycle every 3600 seconds
        """
        database_url = self._database_url

        self._logger.info(f"Initializing database: {database_url.split('@')[-1].split('?')[0]}")

        if database_url.startswith("sqlite"):
            if ":///" in database_url:
                db_path = database_url.split("///")[1].split("?")[0]
                db_dir = os.path.dirname(db_path)
                if db_dir and not os.path.exists(db_dir):
                    os.makedirs(db_dir, exist_ok=True)
                    self._logger.info(f"Created database directory: {db_dir}")

            self._engine = create_async_engine(
                database_url,
                connect_args={"check_same_thread": False},
                pool_pre_ping=True,
                echo=settings.debug,
            )
            enable_sqlite_savepoints(self._engine)
            self._logger.info("Using SQLite database (development mode)")

        else:
            # The sync is a single sequential writer; a small pool is plenty.
            pool_size = int(os.getenv("DB_POOL_SIZE", "5"))
            max_overflow = int(os.getenv("DB_MAX_OVERFLOW", "10"))
            pool_recycle = int(os.getenv("DB_POOL_RECYCLE", "3600"))

            self._engine = create_async_engine(
                database_url,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_pre_ping=True,
                pool_recycle=pool_recycle,
                echo=settings.debug,
            )
            self._logger.info(
                f"Using PostgreSQL database (pool_size={pool_size}, max_overflow={max_overflow})"
            )

        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get async database session as context manager.

        Automatically handles commit on success and rollback on error.

        Yields:
            AsyncSession: Async database session

        Raises:
            RuntimeError: If database is not initialized
        """
        if not self._session_factory:
            raise RuntimeError("Database not initialized")

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def init_db(self) -> None:
        """
        Initialize database by creating all tables.

        Safe to call multiple times (won't recreate existing tables).
        """
        if not self._engine:
            raise RuntimeError("Database engine not initialized")

        self._logger.info("Creating database tables...")

        async with self._engine.begin() as conn:
            # Import all models to ensure they're registered with Base
            from ..database import models  # noqa: F401

            await conn.run_sync(Base.metadata.create_all)

        self._logger.info("Database tables created successfully")

    async def _count(self, session: AsyncSession, table: str) -> int:
        try:
            result = await session.execute(text(f"SELECT COUNT(*) FROM {table}"))
            return result.scalar() or 0
        except SQLAlchemyError as e:
            self._logger.debug(f"Could not count {table}: {e}")
            return 0

    async def health_check(self) -> Dict[str, Any]:
        """
        Check database connectivity and health.

        Returns:
            Dict with health status:
                {
                    "status": "healthy" | "unhealthy",
                    "connected": True | False,
                    "error": "error message" (if unhealthy),
                    "database_type": "sqlite" | "postgresql",
                    "tables": {"tags": count, "resources": count, "resource_tags": count},
                }
        """
        try:
            async with self.get_session() as session:
                await session.execute(text("SELECT 1"))

                tables = {}
                for table in ("tags", "resources", "resource_tags"):
                    tables[table] = await self._count(session, table)

            return {
                "status": "healthy",
                "connected": True,
                "database_type": self.database_type,
                "tables": tables,
            }

        except Exception as e:
            self._logger.error(f"Database health check failed: {str(e)}")
            return {
                "status": "unhealthy",
                "connected": False,
                "error": str(e),
            }

    async def close(self) -> None:
        """Close database engine and all connections."""
        if self._engine:
            await self._engine.dispose()
            self._logger.info("Database connections closed")

    def __repr__(self) -> str:
        db_type = "SQLite" if self.database_type == "sqlite" else "PostgreSQL"
        return f"<DatabaseService(type={db_type})>"


# Global singleton instance
database_service = DatabaseService()
