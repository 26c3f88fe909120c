"""
GuildMembership: the (user, guild) association and its invitation state.
Pure schema.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Enum, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from guildhall.core.database.base import Base, IdMixin, TimestampMixin, UTCDateTime
from guildhall.database.models.social.guild_role import GuildRole, MembershipStatus


class GuildMembership(Base, IdMixin, TimestampMixin):
    """
    Guild membership row.

    Schema-only:
    - (user_id, guild_id) is unique, so a re-invite reuses a REVOKED row
    - invitation_token is unique while present and cleared once consumed
    - joined_at is set when the row first becomes APPROVED
    """

    __tablename__ = "guild_memberships"
    __table_args__ = (
        UniqueConstraint("user_id", "guild_id", name="uq_guild_memberships_user_guild"),
        Index("ix_guild_memberships_guild_status", "guild_id", "status"),
    )

    guild_id: Mapped[str] = mapped_column(
        ForeignKey("guilds.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    role: Mapped[GuildRole] = mapped_column(
        Enum(GuildRole, native_enum=False, length=16, name="guild_role"),
        nullable=False,
        default=GuildRole.MEMBER,
    )
    status: Mapped[MembershipStatus] = mapped_column(
        Enum(MembershipStatus, native_enum=False, length=16, name="membership_status"),
        nullable=False,
        default=MembershipStatus.PENDING,
    )

    invitation_token: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, unique=True
    )
    invitation_expires_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True
    )
    invited_by_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    joined_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return (
            f"GuildMembership(guild_id={self.guild_id!r}, user_id={self.user_id!r}, "
            f"role={self.role.value}, status={self.status.value})"
        )
