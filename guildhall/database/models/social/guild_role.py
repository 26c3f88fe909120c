"""
GuildRole / MembershipStatus: permissible membership roles and lifecycle states.

Role weights live in ``guildhall.modules.guild.roles``; they are never persisted.
"""

import enum


class GuildRole(str, enum.Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MODERATOR = "MODERATOR"
    MEMBER = "MEMBER"


class MembershipStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REVOKED = "REVOKED"
