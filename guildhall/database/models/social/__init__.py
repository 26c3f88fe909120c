"""
Social domain ORM models.

Exports:
- Guild
- GuildMembership
- GuildRole
- MembershipStatus
"""

from .guild import Guild
from .guild_membership import GuildMembership
from .guild_role import GuildRole, MembershipStatus

__all__ = [
    "Guild",
    "GuildMembership",
    "GuildRole",
    "MembershipStatus",
]
