"""Async database engine, session management, and units of work.

Provides:
    - _get_engine / _get_session_factory: lazy singletons bound to settings.
    - get_async_session: FastAPI dependency that yields a session per request.
    - run_unit_of_work: runs one custody operation in its own transaction,
      retrying when it lost an optimistic-concurrency race.
    - init_db / close_db: Lifecycle hooks for FastAPI's lifespan.

Usage in FastAPI:
    @router.post("/crystals/{crystal_id}/dissolve")
    async def dissolve(crystal_id: int, ctx: CallContext = Depends(get_call_context)):
        return await run_unit_of_work(lambda s: CustodyService(s).dissolve(ctx, crystal_id))
"""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeVar

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from crystal_custody.config import get_settings
from crystal_custody.domain.exceptions import ConcurrentModificationError
from crystal_custody.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncEngine

T = TypeVar("T")

logger = get_logger(__name__)

# Module-level singletons (initialized in init_db)
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _get_engine() -> AsyncEngine:
    """Get or create the async engine (lazy singleton)."""
    global _engine
    if _engine is None:
        settings = get_settings()
        if settings.is_sqlite:
            _engine = create_async_engine(
                settings.database_url,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
                echo=settings.db_echo_sql,
            )
        else:
            _engine = create_async_engine(
                settings.database_url,
                pool_size=settings.db_pool_size,
                max_overflow=settings.db_max_overflow,
                pool_timeout=settings.db_pool_timeout,
                pool_pre_ping=True,
                echo=settings.db_echo_sql,
            )
        logger.info("database.engine_created", sqlite=settings.is_sqlite)
    return _engine


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def _get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory (lazy singleton)."""
    global _session_factory
    if _session_factory is None:
        _session_factory = make_session_factory(_get_engine())
    return _session_factory


def use_engine(engine: AsyncEngine) -> None:
    """Bind the module singletons to an externally created engine.

    Used by the simulation script and the test suite to run against SQLite.
    """
    global _engine, _session_factory
    _engine = engine
    _session_factory = make_session_factory(engine)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async database session.

    The session is automatically committed on success or rolled back on error.
    """
    factory = _get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def run_unit_of_work(operation: Callable[[AsyncSession], Awaitable[T]]) -> T:
    """Run ``operation`` in a fresh transaction and commit it.

    A ConcurrentModificationError means another writer committed first; the
    whole unit is replayed on a new session so it re-reads the committed
    state. Any other error rolls back and propagates unchanged.
    """
    settings = get_settings()
    factory = _get_session_factory()

    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(ConcurrentModificationError),
        stop=stop_after_attempt(settings.unit_of_work_attempts),
        wait=wait_exponential(multiplier=0.05, max=1),
        reraise=True,
    ):
        with attempt:
            async with factory() as session:
                try:
                    result = await operation(session)
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise
            if attempt.retry_state.attempt_number > 1:
                logger.info(
                    "database.unit_of_work_retried",
                    attempts=attempt.retry_state.attempt_number,
                )
    return result


async def init_db() -> None:
    """Initialize the database engine and create tables if they don't exist.

    Called during FastAPI's lifespan startup. Tables are only auto-created in
    development; other environments provision the schema ahead of time.
    """
    from crystal_custody.infrastructure.database.orm_models import Base

    engine = _get_engine()
    settings = get_settings()

    if settings.is_development:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            logger.info("database.tables_created")
    else:
        logger.info("database.skipping_create_all", reason="not in development mode")


async def close_db() -> None:
    """Dispose of the database engine. Called during FastAPI's lifespan shutdown."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("database.engine_disposed")
        _engine = None
        _session_factory = None
