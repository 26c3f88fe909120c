"""
Retry of transient database failures.

A guild mutation is replayed from the top (fresh transaction) when the
database reports something that may succeed on a second try:

- ``OperationalError``: dropped connection, server restart, timeout
- SQLSTATE ``40001`` (serialization failure) or ``40P01`` (deadlock) on
  any ``DBAPIError``

``IntegrityError`` is never retried; a duplicate slug or membership stays a
duplicate. Everything else (domain errors included) propagates untouched.

Backoff before attempt ``n + 1`` is
``min(initial * 2**(n - 1), max) + uniform jitter``, in milliseconds.

The policy wraps whole transactions, never statements inside one::

    async def attempt():
        async with DatabaseService.get_transaction() as session:
            return await work(session)

    await policy.execute(attempt, operation_name="guild.join")
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, FrozenSet, Optional, Tuple, Type, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from guildhall.core.config.config import Config
from guildhall.core.logging.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

TRANSIENT_SQLSTATES: FrozenSet[str] = frozenset({"40001", "40P01"})


def sqlstate_of(exc: BaseException) -> Optional[str]:
    """SQLSTATE reported by the driver behind a SQLAlchemy error, if any."""
    driver_error = getattr(exc, "orig", None)
    # asyncpg errors arrive wrapped by SQLAlchemy's adapter, original in __cause__.
    for candidate in (driver_error, getattr(driver_error, "__cause__", None)):
        for attr in ("sqlstate", "pgcode"):
            code = getattr(candidate, attr, None)
            if isinstance(code, str):
                return code
    return None


@dataclass(frozen=True)
class DatabaseRetryConfig:
    """
    Attributes
    ----------
    max_attempts : int
        Total attempts, the first one included.
    initial_backoff_ms, max_backoff_ms : int
        Exponential backoff start and ceiling.
    jitter_ms : int
        Upper bound of the random delay added to each backoff.
    """

    max_attempts: int
    initial_backoff_ms: int
    max_backoff_ms: int
    jitter_ms: int
    retriable_exceptions: Tuple[Type[BaseException], ...] = (OperationalError,)
    retriable_sqlstates: FrozenSet[str] = TRANSIENT_SQLSTATES

    @classmethod
    def from_config(cls) -> DatabaseRetryConfig:
        return cls(
            max_attempts=Config.DATABASE_RETRY_MAX_ATTEMPTS,
            initial_backoff_ms=Config.DATABASE_RETRY_INITIAL_BACKOFF_MS,
            max_backoff_ms=Config.DATABASE_RETRY_MAX_BACKOFF_MS,
            jitter_ms=Config.DATABASE_RETRY_JITTER_MS,
        )


class DatabaseRetryPolicy:
    def __init__(self, config: DatabaseRetryConfig) -> None:
        self.config = config

    @classmethod
    def from_config(cls) -> DatabaseRetryPolicy:
        return cls(DatabaseRetryConfig.from_config())

    def is_retriable(self, exc: BaseException) -> bool:
        if isinstance(exc, IntegrityError):
            return False
        if isinstance(exc, self.config.retriable_exceptions):
            return True
        return isinstance(exc, DBAPIError) and sqlstate_of(exc) in self.config.retriable_sqlstates

    def compute_backoff_ms(self, attempt: int) -> int:
        """Delay after failed attempt number ``attempt`` (1-based)."""
        backoff = min(
            self.config.initial_backoff_ms * 2 ** max(attempt - 1, 0),
            self.config.max_backoff_ms,
        )
        if self.config.jitter_ms > 0:
            backoff += random.randint(0, self.config.jitter_ms)
        return backoff

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str,
        context: Optional[dict[str, Any]] = None,
    ) -> T:
        """
        Await ``operation()`` until it succeeds or fails permanently.

        Parameters
        ----------
        operation : Callable[[], Awaitable[T]]
            Opens its own transaction, so each attempt starts clean.
        operation_name : str
            Stable name for the logs, e.g. ``"guild.invite"``.
        context : Optional[dict[str, Any]]
            Extra ids (guild_id, user_id) for the log records.

        Raises
        ------
        Exception
            The first non-retriable error, or the last transient one once
            ``max_attempts`` is reached.
        """
        log_extra = {**(context or {}), "operation": operation_name}

        for attempt in range(1, self.config.max_attempts + 1):
            try:
                return await operation()
            except Exception as exc:
                if not self.is_retriable(exc):
                    raise

                if attempt >= self.config.max_attempts:
                    logger.error(
                        "Database retries exhausted",
                        extra={
                            **log_extra,
                            "attempt": attempt,
                            "error_type": type(exc).__name__,
                            "sqlstate": sqlstate_of(exc),
                        },
                    )
                    raise

                backoff_ms = self.compute_backoff_ms(attempt)
                logger.warning(
                    "Transient database failure; retrying",
                    extra={
                        **log_extra,
                        "attempt": attempt,
                        "error_type": type(exc).__name__,
                        "sqlstate": sqlstate_of(exc),
                        "backoff_ms": backoff_ms,
                    },
                )
                await asyncio.sleep(backoff_ms / 1000.0)

        # max_attempts < 1: nothing was attempted
        raise ValueError(f"max_attempts must be >= 1, got {self.config.max_attempts}")
