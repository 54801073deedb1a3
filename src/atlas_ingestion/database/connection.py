"""Async database engine and session lifecycle."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from atlas_ingestion.config import DatabaseSettings
from atlas_ingestion.database.models import Base
from atlas_ingestion.utils.logging import get_logger

logger = get_logger("database")


class Database:
    """Owns the SQLAlchemy async engine and session factory for one service instance."""

    def __init__(self, settings: DatabaseSettings, engine: Optional[AsyncEngine] = None):
        """
        Initialize the database.

        Args:
            settings: Database settings
            engine: Pre-built engine (tests pass an in-memory one)
        """
        self.settings = settings
        self._engine = engine or self._create_engine()
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,  # Objects stay readable after commit
            autoflush=False,
        )

    def _create_engine(self) -> AsyncEngine:
        url = self.settings.url
        kwargs = {"echo": self.settings.echo}

        # In-memory SQLite needs one shared connection or every session sees an empty db
        if url.startswith("sqlite") and ":memory:" in url:
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}

        engine = create_async_engine(url, **kwargs)
        logger.info(f"Database engine created: {engine.url.render_as_string(hide_password=True)}")
        return engine

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_tables(self) -> None:
        """Create all tables that do not exist yet."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ensured")

    async def check_connection(self) -> bool:
        """Check if the database answers a trivial query."""
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(text("SELECT 1"))
                row = result.fetchone()
                return row is not None and row[0] == 1
        except SQLAlchemyError as e:
            logger.error(f"Database connection check failed: {e}")
            return False

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Open a session that commits on success and rolls back on error.

        Usage:
            async with database.session() as session:
                repo = DocumentRepository(session)
                ...
        """
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Database session error: {e}")
                raise
            except Exception:
                await session.rollback()
                raise

    async def close(self) -> None:
        """Dispose of the engine and all pooled connections."""
        await self._engine.dispose()
        logger.info("Database engine closed")
