"""
Guildhall Shared Module

Purpose
-------
Provides domain-level foundations for the guild module:
- Domain exceptions and error handling
- Base service and repository patterns

Architecture
------------
- BaseService: Foundation for service classes (logging, config, events)
- BaseRepository: Type-safe database access patterns
- Domain exceptions: Caller-facing errors and business rule violations
"""

from __future__ import annotations

from .base_repository import BaseRepository
from .base_service import BaseService
from .exceptions import (
    ConflictError,
    ErrorSeverity,
    ForbiddenError,
    GuildhallDomainException,
    InvalidInputError,
    InviteExpiredError,
    NotFoundError,
    ValidationError,
)

__all__ = [
    # Base patterns
    "BaseService",
    "BaseRepository",
    # Exceptions
    "GuildhallDomainException",
    "ErrorSeverity",
    "NotFoundError",
    "ConflictError",
    "ForbiddenError",
    "InvalidInputError",
    "ValidationError",
    "InviteExpiredError",
]
