"""
Database Models Package
========================

SQLAlchemy ORM models for the Guildhall engine, organized by domain.

All models:
- Are schema-only, no business logic
- Use Mapped[] syntax with mapped_column()
- Inherit from IdMixin / TimestampMixin
- Declare explicit foreign key constraints with CASCADE rules

Domain Organization:
--------------------
- social: Guilds and guild memberships
"""

from guildhall.core.database.base import Base

from .social import Guild, GuildMembership, GuildRole, MembershipStatus

__all__ = [
    "Base",
    "Guild",
    "GuildMembership",
    "GuildRole",
    "MembershipStatus",
]
