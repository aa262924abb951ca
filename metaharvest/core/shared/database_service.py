# metaharvest/core/shared/database_service.py
"""
Database service for async SQLAlchemy session management.

Provides a singleton service for managing database connections
and sessions. PostgreSQL (asyncpg) is used in production,
SQLite (aiosqlite) for development.

Usage:
    from metaharvest.core.shared.database_service import database_service

    # Get async session (context manager)
    async with database_service.get_session() as session:
        result = await session.execute(select(ExtractionRecord))
        records = result.scalars().all()

    # Initialize database (create tables)
    await database_service.init_db()

Configuration:
    - DATABASE_URL: Connection string (default: sqlite+aiosqlite:///./data/metaharvest.db)
    - DB_POOL_SIZE: Number of connections to maintain (default: 20, PostgreSQL only)
    - DB_MAX_OVERFLOW: Extra connections allowed during peak load (default: 40)
    - DB_POOL_RECYCLE: Recycle connections after N seconds (default: 3600)
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool

from metaharvest.config import settings
from metaharvest.core.database.base import Base


def _is_celery_worker() -> bool:
    """Check if we're running inside a Celery worker process."""
    return (
        os.getenv("CELERY_WORKER") == "1" or
        "celery" in os.getenv("_", "").lower() or
        os.getenv("FORKED_BY_MULTIPROCESSING") == "1"
    )


class DatabaseService:
    """
    Database service for managing async SQLAlchemy sessions.

    The engine is created lazily on first use so importing the module has no
    side effects (no directories created, no connections opened).

    Methods:
        get_session(): Get async database session (context manager)
        init_db(): Initialize database (create all tables)
        close(): Close database engine and connections
    """

    def __init__(self, database_url: Optional[str] = None):
        self._logger = logging.getLogger("metaharvest.database")
        self._database_url = database_url
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None

    @property
    def database_url(self) -> str:
        return self._database_url or os.getenv(
            "DATABASE_URL", "sqlite+aiosqlite:///./data/metaharvest.db"
        )

    @property
    def single_connection(self) -> bool:
        """
        True for in-memory SQLite.

        All sessions then share one connection, so a rollback in one session
        also discards uncommitted writes of any other open session.
        """
        url = self.database_url
        return url.startswith("sqlite") and (":///" not in url or ":memory:" in url)

    def _initialize_engine(self) -> None:
        """
        Initialize database engine based on DATABASE_URL.

        SQLite Configuration:
            - Uses aiosqlite async driver
            - check_same_thread=False for async support
            - Creates data directory if needed

        PostgreSQL Configuration:
            - Uses asyncpg async driver
            - NullPool inside Celery workers (each task runs its own event loop)
            - Connection pooling with pre-ping and recycle everywhere else
        """
        database_url = self.database_url
        self._logger.info(f"Initializing database: {database_url.split('@')[-1].split('?')[0]}")

        if database_url.startswith("sqlite"):
            in_memory = self.single_connection
            if not in_memory:
                db_path = database_url.split("///")[1].split("?")[0]
                db_dir = os.path.dirname(db_path)
                if db_dir and not os.path.exists(db_dir):
                    os.makedirs(db_dir, exist_ok=True)
                    self._logger.info(f"Created database directory: {db_dir}")

            if in_memory:
                # One shared connection, otherwise every session sees an empty database
                self._engine = create_async_engine(
                    database_url,
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool,
                    echo=settings.debug,
                )
            else:
                self._engine = create_async_engine(
                    database_url,
                    connect_args={"check_same_thread": False},
                    pool_pre_ping=True,
                    echo=settings.debug,
                )
            self._logger.info("Using SQLite database (development mode)")

        elif _is_celery_worker():
            # Fresh connection per task: asyncio.run() creates a new loop each time
            self._engine = create_async_engine(
                database_url,
                poolclass=NullPool,
                echo=settings.debug,
            )
            self._logger.info("PostgreSQL configured with NullPool for Celery worker")

        else:
            pool_size = int(os.getenv("DB_POOL_SIZE", "20"))
            max_overflow = int(os.getenv("DB_MAX_OVERFLOW", "40"))
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
                f"PostgreSQL connection pool: size={pool_size}, max_overflow={max_overflow}, recycle={pool_recycle}s"
            )

        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._initialize_engine()
        return self._engine

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get async database session as context manager.

        Automatically handles commit on success and rollback on error.

        Yields:
            AsyncSession: Async database session
        """
        if self._session_factory is None:
            self._initialize_engine()

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
        self._logger.info("Creating database tables...")

        async with self.engine.begin() as conn:
            # Import all models to ensure they're registered with Base
            from metaharvest.core.database import models  # noqa: F401

            await conn.run_sync(Base.metadata.create_all)

        self._logger.info("Database tables created successfully")

    async def close(self) -> None:
        """Close database engine and all connections."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            self._logger.info("Database connections closed")

    def __repr__(self) -> str:
        return f"<DatabaseService(url={self.database_url.split('@')[-1]})>"


# Global singleton instance
database_service = DatabaseService()
