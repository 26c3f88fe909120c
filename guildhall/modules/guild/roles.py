"""
Role hierarchy for guild memberships.

Weights are used only for relative comparisons (actor vs. target, actor vs.
required floor). They are never persisted.
"""

from __future__ import annotations

from typing import Any, Dict

from guildhall.database.models.social.guild_role import GuildRole
from guildhall.modules.shared.exceptions import InvalidInputError

ROLE_WEIGHTS: Dict[GuildRole, int] = {
    GuildRole.OWNER: 4,
    GuildRole.ADMIN: 3,
    GuildRole.MODERATOR: 2,
    GuildRole.MEMBER: 1,
}


def role_weight(role: GuildRole) -> int:
    """Return the integer weight of a role (OWNER=4 ... MEMBER=1)."""
    return ROLE_WEIGHTS[role]


def outranks(role: GuildRole, other: GuildRole) -> bool:
    """True when ``role`` is strictly above ``other``."""
    return role_weight(role) > role_weight(other)


def parse_role(value: Any, field_name: str = "role") -> GuildRole:
    """
    Coerce caller input into a GuildRole.

    Accepts a GuildRole or its name in any case ("admin", "ADMIN").

    Raises:
        InvalidInputError: If the value names no known role
    """
    if isinstance(value, GuildRole):
        return value

    if isinstance(value, str):
        try:
            return GuildRole[value.strip().upper()]
        except KeyError:
            pass

    valid = ", ".join(role.value for role in GuildRole)
    raise InvalidInputError(field_name, f"Unknown role {value!r}. Must be one of: {valid}")
