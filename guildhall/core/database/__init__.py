"""
Database subsystem for Guildhall.

Provides the async SQLAlchemy engine, session and transaction management,
transient-failure retries, and the ORM base classes and mixins used by
model definitions.
"""

from guildhall.core.database.base import (
    Base,
    IdMixin,
    TimestampMixin,
    UTCDateTime,
    new_id,
    utc_now,
)
from guildhall.core.database.retry_policy import DatabaseRetryConfig, DatabaseRetryPolicy
from guildhall.core.database.service import (
    DatabaseInitializationError,
    DatabaseNotInitializedError,
    DatabaseService,
)

__all__ = [
    # ORM Base & Mixins
    "Base",
    "IdMixin",
    "TimestampMixin",
    "UTCDateTime",
    "new_id",
    "utc_now",
    # Main service
    "DatabaseService",
    # Retry
    "DatabaseRetryConfig",
    "DatabaseRetryPolicy",
    # Exceptions
    "DatabaseInitializationError",
    "DatabaseNotInitializedError",
]
