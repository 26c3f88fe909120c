"""
Guild-specific repositories.

Thin query helpers over BaseRepository; no business rules live here.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm.attributes import set_committed_value

from guildhall.core.database.base import utc_now
from guildhall.database.models import Guild, GuildMembership, MembershipStatus
from guildhall.modules.shared.base_repository import BaseRepository

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession


class GuildRepository(BaseRepository[Guild]):
    def __init__(self, logger: Logger) -> None:
        super().__init__(Guild, logger)

    async def find_by_slug(self, session: AsyncSession, slug: str) -> Optional[Guild]:
        return await self.find_one_where(session, Guild.slug == slug)

    async def slug_exists(self, session: AsyncSession, slug: str) -> bool:
        return await self.exists(session, Guild.slug == slug)

    async def adjust_member_count(
        self,
        session: AsyncSession,
        guild: Guild,
        delta: int,
    ) -> int:
        """
        Atomically add ``delta`` to ``guild.member_count``.

        The increment is applied in SQL (``member_count = member_count + delta``)
        so concurrent transactions never lose updates. The in-session
        instance is updated to the stored value.

        Returns:
            The new member count
        """
        await session.execute(
            update(Guild)
            .where(Guild.id == guild.id)
            .values(member_count=Guild.member_count + delta, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(
            select(Guild.member_count).where(Guild.id == guild.id)
        )
        new_count = result.scalar_one()
        set_committed_value(guild, "member_count", new_count)

        self.log.debug(
            "GuildRepository.adjust_member_count",
            extra={"guild_id": guild.id, "delta": delta, "member_count": new_count},
        )

        return new_count


class MembershipRepository(BaseRepository[GuildMembership]):
    def __init__(self, logger: Logger) -> None:
        super().__init__(GuildMembership, logger)

    async def find_for_user(
        self,
        session: AsyncSession,
        guild_id: str,
        user_id: str,
        for_update: bool = False,
    ) -> Optional[GuildMembership]:
        return await self.find_one_where(
            session,
            GuildMembership.guild_id == guild_id,
            GuildMembership.user_id == user_id,
            for_update=for_update,
        )

    async def find_by_token(
        self,
        session: AsyncSession,
        guild_id: str,
        token: str,
        for_update: bool = False,
    ) -> Optional[GuildMembership]:
        return await self.find_one_where(
            session,
            GuildMembership.guild_id == guild_id,
            GuildMembership.invitation_token == token,
            for_update=for_update,
        )

    async def list_by_status(
        self,
        session: AsyncSession,
        guild_id: str,
        status: MembershipStatus,
    ) -> List[GuildMembership]:
        return await self.find_many_where(
            session,
            GuildMembership.guild_id == guild_id,
            GuildMembership.status == status,
            order_by=(GuildMembership.created_at, GuildMembership.id),
        )

    async def delete_for_guild(self, session: AsyncSession, guild_id: str) -> int:
        return await self.delete_where(session, GuildMembership.guild_id == guild_id)
