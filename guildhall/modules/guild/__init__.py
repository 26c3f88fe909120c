"""
Guild Module
============

Business logic for guilds, memberships, invitations and role-based
authorization.

Exports:
- GuildService: Guild registry (create, lookup, update, delete, search, transfer)
- GuildMemberService: Membership lifecycle (join, leave, assign role)
- GuildInviteService: Invitation workflow (invite, revoke, approve, resend)
- GuildPermissionService: Owner-or-role-floor authorization gate
- GuildNotificationListener: Invite notifications from committed events
"""

from .core_service import GuildService
from .invite_service import GuildInviteService, invite_usability
from .member_service import GuildMemberService
from .notifications import (
    ContactDirectory,
    GuildNotificationListener,
    LoggingNotifier,
    Notifier,
    StaticContactDirectory,
)
from .permission_service import MANAGE_FLOOR, GuildPermissionService
from .roles import parse_role, role_weight
from .settings import GuildSettings
from .slug import slugify

__all__ = [
    "GuildService",
    "GuildMemberService",
    "GuildInviteService",
    "GuildPermissionService",
    "GuildNotificationListener",
    "Notifier",
    "ContactDirectory",
    "LoggingNotifier",
    "StaticContactDirectory",
    "GuildSettings",
    "MANAGE_FLOOR",
    "invite_usability",
    "parse_role",
    "role_weight",
    "slugify",
]
