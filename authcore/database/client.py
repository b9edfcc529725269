"""PostgreSQL client and connection management with SQLAlchemy."""

import logging
from collections.abc import Awaitable, Callable

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from authcore.config.settings import settings
from authcore.shared.results import StoreErrorKind, StoreResult

from .base import Base

logger = logging.getLogger(__name__)

# Global SQLAlchemy engine
_engine: AsyncEngine | None = None


async def run_in_session[T](
    session_factory: async_sessionmaker[AsyncSession],
    operation: str,
    work: Callable[[AsyncSession], Awaitable[T]],
) -> StoreResult[T]:
    """Run one unit of work in its own session and transaction.

    Database errors are logged with the operation name and converted to a
    failed StoreResult instead of propagating.

    Args:
        session_factory: Factory producing AsyncSession instances
        operation: Name of the store operation, used in logs and error detail
        work: Coroutine function receiving the session and returning the value

    Returns:
        StoreResult carrying the value or the error classification

    """
    try:
        async with session_factory() as session:
            value = await work(session)
            await session.commit()
            return StoreResult.success(value)
    except IntegrityError as exc:
        logger.error(f"Integrity error during {operation}: {exc.orig}")
        return StoreResult.failure(StoreErrorKind.INTEGRITY, f"{operation}: integrity violation")
    except (SQLAlchemyError, OSError) as exc:
        logger.error(f"Database error during {operation}: {exc}")
        return StoreResult.failure(StoreErrorKind.UNAVAILABLE, f"{operation}: {type(exc).__name__}")


async def create_tables(engine: AsyncEngine) -> None:
    """Create any missing tables for the registered models."""
    # Register models on Base.metadata
    import authcore.features.auth.models  # noqa: F401
    import authcore.features.csrf.models  # noqa: F401
    import authcore.features.lockout.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db() -> async_sessionmaker[AsyncSession]:
    """Initialize PostgreSQL connection and SQLAlchemy.

    This function:
    1. Creates the async engine
    2. Creates the session factory
    3. Verifies connection
    4. Creates missing tables when postgres_create_tables is set

    Returns:
        The session factory used by the session and CSRF stores

    """
    global _engine

    try:
        logger.info(f"Connecting to PostgreSQL at {settings.postgres_url.split('@')[-1]}")

        # Create async engine
        _engine = create_async_engine(
            settings.postgres_url,
            echo=settings.postgres_echo,
            pool_size=settings.postgres_pool_size,
            max_overflow=settings.postgres_max_overflow,
            pool_timeout=settings.postgres_pool_timeout,
            pool_recycle=settings.postgres_pool_recycle,
            pool_pre_ping=True,  # Verify connections before using
        )

        # Create session factory
        session_factory = async_sessionmaker(
            _engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        # Verify connection
        async with _engine.begin() as conn:
            await conn.execute(text("SELECT 1"))

        if settings.postgres_create_tables:
            await create_tables(_engine)

        logger.info("PostgreSQL connection successful")
        logger.info("Database initialization complete")

    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    return session_factory


async def close_db() -> None:
    """Close PostgreSQL connection gracefully."""
    global _engine

    if _engine is not None:
        logger.info("Closing PostgreSQL connection")
        await _engine.dispose()
        _engine = None
        logger.info("PostgreSQL connection closed")
