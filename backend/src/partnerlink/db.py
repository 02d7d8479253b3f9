"""PostgreSQL access for the link store.

One lazily created async engine per process. Sessions come from
``get_db_session()``, which wraps each block in a single transaction, and
``advisory_xact_lock()`` serializes work on a link key across every
process sharing the database until that transaction ends.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import get_settings
from .logging import get_logger

logger = get_logger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Get or create the async engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.database_url,
            echo=settings.api_debug,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,
        )
        logger.info(
            "Created database engine",
            extra={
                "host": settings.postgres_host,
                "database": settings.postgres_db,
                "pool_size": settings.database_pool_size,
            },
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory bound to the engine."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Run a block inside one transaction.

    Commits on clean exit and rolls back on error. Advisory locks taken
    with ``advisory_xact_lock`` are released at that point.

    Usage:
        async with get_db_session() as db:
            await advisory_xact_lock(db, "acme:client:c-1")
            ...
    """
    session = get_session_factory()()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def advisory_xact_lock(
    session: AsyncSession, key: str, namespace: int | None = None
) -> None:
    """Block until this transaction holds the advisory lock for ``key``.

    Keys are hashed with ``hashtext``. With a ``namespace`` the two-key
    form is used, whose lock space never overlaps the single-key form, so
    the same key can be locked at two nested levels without deadlocking.
    """
    if namespace is None:
        await session.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
            {"key": key},
        )
    else:
        await session.execute(
            text("SELECT pg_advisory_xact_lock(:namespace, hashtext(:key))"),
            {"namespace": namespace, "key": key},
        )


async def close_all_connections() -> None:
    """Dispose of the engine (for shutdown)."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Closed database engine")
