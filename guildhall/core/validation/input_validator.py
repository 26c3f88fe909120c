"""
Input Validation for Guildhall

Caller-supplied values are checked here before they reach a query or a row:
opaque identifiers, bounded text, whole numbers and pagination. Guild rules
(settings schema, role checks) live in ``modules.guild``.

Failures raise ``ValidationError`` (an ``InvalidInputError``) naming the
offending field, and leave a debug record with the raw value.
"""

from __future__ import annotations

from typing import Any, NoReturn, Optional, Tuple

from guildhall.core.logging.logger import get_logger
from guildhall.modules.shared.exceptions import ValidationError

logger = get_logger(__name__)

MAX_ID_LENGTH = 64


def _reject(field_name: str, value: Any, reason: str) -> NoReturn:
    logger.debug(
        "Input validation failed",
        extra={"field_name": field_name, "raw_value": repr(value), "reason": reason},
    )
    raise ValidationError(field_name, reason)


class InputValidator:
    """Stateless validators; each returns the cleaned value or raises."""

    @staticmethod
    def validate_id(value: Any, field_name: str = "id") -> str:
        """
        Opaque user or guild identifier.

        Ids are only ever compared for equality, so the rules are minimal:
        a non-empty string, no surrounding whitespace, at most 64 characters.
        """
        if not isinstance(value, str):
            _reject(field_name, value, "Must be a string identifier")
        if not value or value != value.strip():
            _reject(field_name, value, "Identifier cannot be blank or padded")
        if len(value) > MAX_ID_LENGTH:
            _reject(field_name, value, f"Identifier cannot exceed {MAX_ID_LENGTH} characters")
        return value

    @staticmethod
    def validate_string(
        value: Any,
        field_name: str,
        min_length: Optional[int] = None,
        max_length: Optional[int] = None,
    ) -> str:
        """
        Required text, stripped, with optional length bounds.

        Args:
            value: Raw input
            field_name: Field named in the error
            min_length: Minimum length after stripping
            max_length: Maximum length after stripping

        Returns:
            The stripped string
        """
        if not isinstance(value, str):
            _reject(field_name, value, "Value is required" if value is None else "Must be a string")

        text = value.strip()
        if min_length is not None and len(text) < min_length:
            _reject(field_name, text, f"Must be at least {min_length} characters")
        if max_length is not None and len(text) > max_length:
            _reject(field_name, text, f"Cannot exceed {max_length} characters")
        return text

    @staticmethod
    def validate_optional_string(
        value: Any,
        field_name: str,
        max_length: Optional[int] = None,
    ) -> Optional[str]:
        """``validate_string`` that lets ``None`` through."""
        if value is None:
            return None
        return InputValidator.validate_string(value, field_name, max_length=max_length)

    @staticmethod
    def validate_integer(
        value: Any,
        field_name: str,
        min_value: Optional[int] = None,
        max_value: Optional[int] = None,
    ) -> int:
        """Whole number within ``[min_value, max_value]``; bools are rejected."""
        if isinstance(value, bool) or value is None:
            _reject(field_name, value, "Must be a whole number")
        if isinstance(value, float) and not value.is_integer():
            _reject(field_name, value, f"Must be a whole number, got {value}")
        try:
            number = int(value)
        except (TypeError, ValueError):
            _reject(field_name, value, f"Must be a whole number, got {value!r}")

        if min_value is not None and number < min_value:
            _reject(field_name, number, f"Must be at least {min_value}")
        if max_value is not None and number > max_value:
            _reject(field_name, number, f"Cannot exceed {max_value}")
        return number

    @staticmethod
    def validate_pagination(page: Any, size: Any, max_size: int) -> Tuple[int, int]:
        """Zero-based ``page`` and ``1 <= size <= max_size``."""
        return (
            InputValidator.validate_integer(page, "page", min_value=0),
            InputValidator.validate_integer(size, "size", min_value=1, max_value=max_size),
        )
