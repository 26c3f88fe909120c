"""
Guild settings document.

Settings are a closed, versioned record rather than an open map:

    {"version": 1, "discoverable": false, "requireApproval": false,
     "visibility": "public"}

Callers send partial updates using the document keys. Unknown keys and
wrongly-typed values are rejected before anything is written; accepted
values are merged over the stored document.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from guildhall.modules.shared.exceptions import InvalidInputError

logger = logging.getLogger(__name__)

SETTINGS_VERSION = 1
VISIBILITY_CHOICES: Tuple[str, ...] = ("public", "private")


def _check_bool(key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise InvalidInputError(f"settings.{key}", "Must be a boolean")
    return value


def _check_visibility(key: str, value: Any) -> str:
    normalized = value.strip().lower() if isinstance(value, str) else None
    if normalized not in VISIBILITY_CHOICES:
        raise InvalidInputError(
            f"settings.{key}",
            f"Must be one of: {', '.join(VISIBILITY_CHOICES)}",
        )
    return normalized


# document key -> (dataclass attribute, value check)
_SCHEMA: Dict[str, Tuple[str, Callable[[str, Any], Any]]] = {
    "discoverable": ("discoverable", _check_bool),
    "requireApproval": ("require_approval", _check_bool),
    "visibility": ("visibility", _check_visibility),
}


@dataclass(frozen=True)
class GuildSettings:
    """Typed view of a stored settings document."""

    discoverable: bool = False
    require_approval: bool = False
    visibility: str = "public"
    version: int = SETTINGS_VERSION

    @classmethod
    def from_mapping(cls, document: Optional[Mapping[str, Any]]) -> "GuildSettings":
        """
        Read a stored document.

        Stored rows may predate the current schema, so unknown keys and bad
        values fall back to defaults instead of failing the read.
        """
        settings = cls()
        if not document:
            return settings

        updates: Dict[str, Any] = {}
        for key, value in document.items():
            entry = _SCHEMA.get(key)
            if entry is None:
                continue
            attr, check = entry
            try:
                updates[attr] = check(key, value)
            except InvalidInputError:
                logger.warning(
                    "Ignoring invalid stored guild setting",
                    extra={"setting": key, "value": repr(value)},
                )
        return replace(settings, **updates)

    def to_document(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {"version": self.version}
        for key, (attr, _) in _SCHEMA.items():
            document[key] = getattr(self, attr)
        return document


def validate_and_normalize(partial: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Validate a partial settings update.

    Args:
        partial: Document keys to change; ``None`` means no change

    Returns:
        The accepted keys and values (document key names)

    Raises:
        InvalidInputError: On a non-mapping input, an unknown key, or a
            value of the wrong type
    """
    if partial is None:
        return {}

    if not isinstance(partial, Mapping):
        raise InvalidInputError("settings", "Must be an object")

    normalized: Dict[str, Any] = {}
    for key, value in partial.items():
        entry = _SCHEMA.get(key)
        if entry is None:
            raise InvalidInputError(
                "settings",
                f"Unknown setting {key!r}. Allowed: {', '.join(_SCHEMA)}",
            )
        _, check = entry
        normalized[key] = check(key, value)

    return normalized


def merge(existing: Optional[Mapping[str, Any]], validated: Mapping[str, Any]) -> Dict[str, Any]:
    """Overlay validated changes onto a stored document and stamp the version."""
    current = GuildSettings.from_mapping(existing)
    updates = {_SCHEMA[key][0]: value for key, value in validated.items()}
    return replace(current, version=SETTINGS_VERSION, **updates).to_document()


__all__ = [
    "SETTINGS_VERSION",
    "VISIBILITY_CHOICES",
    "GuildSettings",
    "validate_and_normalize",
    "merge",
]
