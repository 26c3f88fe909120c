"""
Database engine and transactions for the guild services.

One ``AsyncEngine`` per process, held on the ``DatabaseService`` class.
Guild operations never manage sessions themselves; they hand a unit of
work to ``run_in_transaction``::

    async def rename(session):
        guild = await session.get(Guild, guild_id, with_for_update=True)
        guild.name = "Renamed"
        return guild

    guild = await DatabaseService.run_in_transaction(rename, operation_name="guild.update")

The unit of work commits when it returns and rolls back when it raises.
Transient failures (see ``DatabaseRetryPolicy``) replay the whole unit in
a fresh transaction.

Pooling follows the environment: ``AsyncAdaptedQueuePool`` normally,
``NullPool`` under tests so each test gets its own connections. PostgreSQL
transactions get ``SET LOCAL statement_timeout``.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, Optional, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool, NullPool

from guildhall.core.config.config import Config
from guildhall.core.database.base import Base
from guildhall.core.database.retry_policy import DatabaseRetryPolicy
from guildhall.core.logging.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

POSTGRES_SCHEMES = ("postgresql://", "postgresql+asyncpg://")


class DatabaseInitializationError(RuntimeError):
    """DATABASE_URL missing or the engine could not be created."""


class DatabaseNotInitializedError(RuntimeError):
    """A session was requested before ``initialize()`` or after ``shutdown()``."""


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0


def _engine_options(testing: bool) -> Dict[str, Any]:
    if testing:
        return {"echo": Config.DATABASE_ECHO, "poolclass": NullPool}
    return {
        "echo": Config.DATABASE_ECHO,
        "poolclass": AsyncAdaptedQueuePool,
        "pool_size": Config.DATABASE_POOL_SIZE,
        "max_overflow": Config.DATABASE_MAX_OVERFLOW,
        "pool_recycle": Config.DATABASE_POOL_RECYCLE,
        "pool_timeout": Config.DATABASE_POOL_TIMEOUT,
        "pool_pre_ping": True,
    }


class DatabaseService:
    """
    Class-level holder of the engine, session factory and retry policy.

    Lifecycle: ``initialize``, ``shutdown``, ``create_schema``, ``drop_schema``.
    Sessions: ``get_session`` (reads), ``get_transaction`` (one atomic write),
    ``run_in_transaction`` (atomic write with retries).
    """

    _engine: Optional[AsyncEngine] = None
    _session_factory: Optional[async_sessionmaker[AsyncSession]] = None
    _retry_policy: Optional[DatabaseRetryPolicy] = None
    _statement_timeout_ms: Optional[int] = None
    _init_lock: Optional[asyncio.Lock] = None

    @classmethod
    def _lock(cls) -> asyncio.Lock:
        # Bound to the running loop, so created on first use.
        if cls._init_lock is None:
            cls._init_lock = asyncio.Lock()
        return cls._init_lock

    @classmethod
    async def initialize(
        cls,
        url: Optional[str] = None,
        *,
        testing: Optional[bool] = None,
        retry_policy: Optional[DatabaseRetryPolicy] = None,
    ) -> None:
        """
        Create the engine. A second call while initialized does nothing.

        Parameters
        ----------
        url : Optional[str]
            Overrides ``Config.DATABASE_URL``.
        testing : Optional[bool]
            Use NullPool. Defaults to ``Config.is_testing()``.
        retry_policy : Optional[DatabaseRetryPolicy]
            Overrides the policy built from Config.
        """
        async with cls._lock():
            if cls._engine is not None:
                logger.debug("DatabaseService already initialized")
                return

            database_url = Config.DATABASE_URL if url is None else url
            if not isinstance(database_url, str) or not database_url:
                logger.error("DATABASE_URL is not configured")
                raise DatabaseInitializationError("DATABASE_URL must be a non-empty string")

            is_testing = Config.is_testing() if testing is None else testing
            scheme = database_url.split(":", 1)[0]
            options = _engine_options(is_testing)

            try:
                engine = create_async_engine(database_url, **options)
            except Exception as exc:
                logger.error(
                    "Database engine creation failed",
                    extra={"url_scheme": scheme, "error_type": type(exc).__name__},
                    exc_info=True,
                )
                raise DatabaseInitializationError(
                    f"Database initialization failed: {exc}"
                ) from exc

            cls._engine = engine
            cls._session_factory = async_sessionmaker(
                bind=engine, class_=AsyncSession, expire_on_commit=False
            )
            cls._retry_policy = retry_policy or DatabaseRetryPolicy.from_config()
            cls._statement_timeout_ms = (
                Config.DATABASE_STATEMENT_TIMEOUT_MS
                if database_url.startswith(POSTGRES_SCHEMES)
                else None
            )

            logger.info(
                "DatabaseService initialized",
                extra={
                    "url_scheme": scheme,
                    "pool_class": options["poolclass"].__name__,
                    "max_attempts": cls._retry_policy.config.max_attempts,
                },
            )

    @classmethod
    async def shutdown(cls) -> None:
        """Dispose the engine. Safe to call when not initialized."""
        async with cls._lock():
            engine, cls._engine = cls._engine, None
            cls._session_factory = None
            cls._retry_policy = None
            cls._statement_timeout_ms = None
            if engine is not None:
                await engine.dispose()
                logger.info("DatabaseService shut down")

        # The next event loop (next test) needs a fresh lock.
        cls._init_lock = None

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._engine is not None

    @classmethod
    def get_engine(cls) -> AsyncEngine:
        if cls._engine is None:
            raise DatabaseNotInitializedError(
                "DatabaseService.initialize() must be called before use"
            )
        return cls._engine

    @classmethod
    async def create_schema(cls) -> None:
        """Create every guild table (tests and local bootstrap; no migrations)."""
        import guildhall.database.models  # noqa: F401  (fills Base.metadata)

        async with cls.get_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema created", extra={"tables": len(Base.metadata.tables)})

    @classmethod
    async def drop_schema(cls) -> None:
        async with cls.get_engine().begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        logger.info("Database schema dropped")

    @classmethod
    async def health_check(cls) -> bool:
        """``SELECT 1``; False when uninitialized or unreachable."""
        if cls._engine is None:
            return False

        start = time.perf_counter()
        try:
            async with cls._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except DBAPIError as exc:
            logger.warning(
                "Database health check failed",
                extra={"error_type": type(exc).__name__, "duration_ms": _elapsed_ms(start)},
            )
            return False
        return True

    @classmethod
    def _new_session(cls) -> AsyncSession:
        if cls._session_factory is None:
            logger.error("Database session requested before initialization")
            raise DatabaseNotInitializedError(
                "DatabaseService.initialize() must be called before use"
            )
        return cls._session_factory()

    @classmethod
    async def _prepare(cls, session: AsyncSession) -> None:
        if cls._statement_timeout_ms is not None:
            await session.execute(
                text(f"SET LOCAL statement_timeout = {int(cls._statement_timeout_ms)}")
            )

    @classmethod
    @asynccontextmanager
    async def get_session(cls) -> AsyncGenerator[AsyncSession, None]:
        """Session for reads. Nothing is committed; closing rolls back."""
        async with cls._new_session() as session:
            await cls._prepare(session)
            yield session

    @classmethod
    @asynccontextmanager
    async def get_transaction(cls) -> AsyncGenerator[AsyncSession, None]:
        """
        Session inside one atomic transaction.

        Commits when the block exits normally; rolls back and re-raises
        otherwise. Callers never call ``commit`` or ``rollback`` themselves.
        """
        start = time.perf_counter()
        async with cls._new_session() as session:
            try:
                await cls._prepare(session)
                yield session
                await session.commit()
            except BaseException as exc:
                await session.rollback()
                # Storage failures at warning; domain errors are routine.
                log = logger.warning if isinstance(exc, DBAPIError) else logger.debug
                log(
                    "Transaction rolled back",
                    extra={"error_type": type(exc).__name__, "duration_ms": _elapsed_ms(start)},
                )
                raise
            logger.debug("Transaction committed", extra={"duration_ms": _elapsed_ms(start)})

    @classmethod
    async def run_in_transaction(
        cls,
        work: Callable[[AsyncSession], Awaitable[T]],
        *,
        operation_name: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> T:
        """
        Run ``work(session)`` atomically, replaying it on transient failures.

        Parameters
        ----------
        work : Callable[[AsyncSession], Awaitable[T]]
            The unit of work; may run more than once.
        operation_name : str
            Stable name for retry logs, e.g. ``"guild.join"``.
        context : Optional[Dict[str, Any]]
            Guild / user ids for retry logs.

        Returns
        -------
        T
            What ``work`` returned on the attempt that committed.
        """
        policy = cls._retry_policy
        if policy is None:
            raise DatabaseNotInitializedError(
                "DatabaseService.initialize() must be called before use"
            )

        async def attempt() -> T:
            async with cls.get_transaction() as session:
                return await work(session)

        return await policy.execute(attempt, operation_name=operation_name, context=context)
