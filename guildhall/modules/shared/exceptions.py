"""
Guild domain errors.

Every rule violation raised by the guild services is a
``GuildhallDomainException`` subclass. Callers (HTTP layer, bot, CLI) map
them onto their own responses:

    NotFoundError       guild, membership or usable invite missing
    ConflictError       slug taken, membership already exists
    ForbiddenError      actor below the required role, or not the owner
    InvalidInputError   malformed ids, names, settings, roles
    InviteExpiredError  pending invite used after its expiry

``details`` always holds the guild / user ids involved. Storage messages
never end up in ``message`` or ``details``; services translate constraint
violations before raising.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    """How loudly a handler should log the error."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class GuildhallDomainException(Exception):
    """
    Base of the guild error hierarchy.

    Args:
        message: Human-readable description
        details: Structured ids for logs and API payloads
        severity: Overrides the class default severity
        is_retryable: Overrides the class default
        error_code: Stable machine-readable code (class name when omitted)
    """

    DEFAULT_SEVERITY: ErrorSeverity = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[ErrorSeverity] = None,
        is_retryable: Optional[bool] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})
        self.severity = severity or self.DEFAULT_SEVERITY
        self.is_retryable = self.DEFAULT_RETRYABLE if is_retryable is None else is_retryable
        self.error_code = error_code or type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
        }

    def __str__(self) -> str:
        if not self.details:
            return f"[{self.error_code}] {self.message}"
        return f"[{self.error_code}] {self.message} | Details: {self.details}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, details={self.details!r})"


class NotFoundError(GuildhallDomainException):
    """
    A guild, membership or invitation does not exist.

    Unusable invitation tokens (unknown, consumed, revoked) are reported the
    same way, so callers cannot tell whether a token ever existed.

    Args:
        resource_type: "Guild", "Membership" or "Invite"
        identifier: Id or slug that was looked up
        details: Extra ids
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(
        self,
        resource_type: str,
        identifier: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.resource_type = resource_type
        self.identifier = identifier
        message = f"{resource_type} not found"
        if identifier is not None:
            message = f"{message}: {identifier}"
        super().__init__(
            message,
            details={"resource_type": resource_type, "identifier": identifier, **(details or {})},
            error_code=f"{resource_type.upper()}_NOT_FOUND",
        )


class ConflictError(GuildhallDomainException):
    """The change collides with existing state (slug in use, membership exists)."""

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: str = "CONFLICT",
    ) -> None:
        super().__init__(message, details=details, error_code=error_code)


class ForbiddenError(GuildhallDomainException):
    """
    The actor may not perform ``action`` on this guild.

    Args:
        action: Stable action name, e.g. "guild.update" or "guild.invite"
        reason: Why it was denied
        details: guild_id, actor_id and any target ids
    """

    DEFAULT_SEVERITY = ErrorSeverity.WARNING

    def __init__(
        self,
        action: str,
        reason: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.action = action
        self.reason = reason
        super().__init__(
            f"Forbidden: {reason}",
            details={"action": action, **(details or {})},
            error_code="FORBIDDEN",
        )


class InvalidInputError(GuildhallDomainException):
    """
    Caller input failed validation.

    Args:
        field: Offending field, e.g. "name" or "settings.visibility"
        message: What is wrong with it
        details: Extra ids
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(
        self,
        field: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.field = field
        self.validation_message = message
        super().__init__(
            f"Validation error for {field}: {message}",
            details={"field": field, "validation_message": message, **(details or {})},
            error_code=f"VALIDATION_{field.upper()}",
        )


# Raised by InputValidator; same type so callers catch one thing.
ValidationError = InvalidInputError


class InviteExpiredError(GuildhallDomainException):
    """A pending invitation was used after ``expires_at``."""

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, guild_id: str, user_id: str, expires_at: Optional[datetime]) -> None:
        self.guild_id = guild_id
        self.user_id = user_id
        self.expires_at = expires_at
        super().__init__(
            "Invitation has expired",
            details={
                "guild_id": guild_id,
                "user_id": user_id,
                "expires_at": expires_at.isoformat() if expires_at else None,
            },
            error_code="INVITE_EXPIRED",
        )
