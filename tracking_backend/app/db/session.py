"""
Database session configuration.

The database is the durable tier of trip tracking: one snapshot document
per trip, written on start, on every update and on stop. Engine and session
factory use SQLAlchemy's async support (asyncpg in production).
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from tracking_backend.app.core.config import settings


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    """Session factory used by the persistence bridge and by tests."""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=settings.db_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
)

AsyncSessionLocal = create_session_factory(engine)

# Create declarative base for models
Base = declarative_base()
