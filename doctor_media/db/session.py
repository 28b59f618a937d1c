"""Database engine and session handling."""

import logging
from typing import AsyncGenerator, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for all models."""


class Database:
    """Owns the async engine and the session factory.

    One instance is opened in the application lifespan and stored on
    ``app.state.db``; the Celery worker and scripts create their own.
    """

    def __init__(self, url: str, echo: bool = False, **engine_kwargs):
        self.url = url
        self.echo = echo
        self.engine_kwargs = engine_kwargs or {"pool_pre_ping": True}
        self._engine: Optional[AsyncEngine] = None
        self._session_maker: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database is not open")
        return self._engine

    def open(self) -> "Database":
        if self._engine is None:
            self._engine = create_async_engine(self.url, echo=self.echo, **self.engine_kwargs)
            self._session_maker = async_sessionmaker(
                self._engine, class_=AsyncSession, expire_on_commit=False
            )
            logger.info("Database engine created")
        return self

    async def close(self):
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_maker = None
            logger.info("Database engine disposed")

    def session(self) -> AsyncSession:
        if self._session_maker is None:
            raise RuntimeError("Database is not open")
        return self._session_maker()

    async def create_all(self):
        """Create all tables that don't exist yet."""
        # models must be imported so their tables are registered on Base
        from doctor_media.db import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)


async def init_db(db: Database):
    """Initialize the database schema."""
    await db.create_all()


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session from the app's database."""
    database: Database = request.app.state.db
    async with database.session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
