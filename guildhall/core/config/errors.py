"""
Configuration errors.

Kept apart from the guild domain errors: a bad deployment value is an
operator problem, not something the caller did wrong.
"""

from typing import Any, Dict, Optional


class ConfigError(Exception):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(ConfigError):
    """A tunable is missing, of the wrong type or out of range; ``details["key"]`` names it."""


__all__ = [
    "ConfigError",
    "ConfigurationError",
]
