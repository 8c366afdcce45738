"""
Database configuration and session management
"""
from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from .config import Settings
from .logging import get_logger

logger = get_logger(__name__)

# Create base class for declarative models
Base = declarative_base()


def create_engine(settings: Settings) -> AsyncEngine:
    """
    Create the async SQLAlchemy engine

    An in-memory SQLite database lives on a single shared connection;
    file SQLite keeps the default pool and every other backend gets a
    bounded one.
    """
    if settings.DATABASE_URL.startswith("sqlite"):
        if ":memory:" in settings.DATABASE_URL:
            return create_async_engine(
                settings.DATABASE_URL,
                echo=settings.DB_ECHO,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_async_engine(settings.DATABASE_URL, echo=settings.DB_ECHO)

    return create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DB_ECHO,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,  # Enable connection health checks
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Create session factory bound to the engine"""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Database dependency for FastAPI

    Yields:
        Async SQLAlchemy session from the application's session factory
    """
    async with request.app.state.session_factory() as session:
        yield session


async def init_db(engine: AsyncEngine) -> None:
    """Initialize database - create all tables"""
    logger.info("Initializing database")
    # Register models on the metadata
    from ..models import database  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database initialized")


async def close_db(engine: AsyncEngine) -> None:
    """Close database connections"""
    logger.info("Closing database connections")
    await engine.dispose()
    logger.info("Database connections closed")
