"""
Guild authorization.

Authorization is two composable predicates:

- ``is_owner``: the actor is the user named by ``guild.owner_id``
- ``meets_floor``: the actor holds an APPROVED membership whose role weight
  is at least the required floor

``check`` allows an action when either predicate holds. Ownership is tied to
the guild's identity field, not to the mutable membership role, so a role
change can never strip owner privileges.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional, Type

from guildhall.database.models import Guild, GuildMembership, GuildRole, MembershipStatus
from guildhall.modules.guild.repository import MembershipRepository
from guildhall.modules.guild.roles import role_weight
from guildhall.modules.shared.base_service import BaseService
from guildhall.modules.shared.exceptions import ForbiddenError

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from guildhall.core.config.manager import ConfigManager
    from guildhall.core.event.bus import EventBus

# Minimum role for membership management (invite, revoke, approve others, assign roles).
MANAGE_FLOOR = GuildRole.MODERATOR


# ========================================================================
# PREDICATES
# ========================================================================


def is_owner(guild: Guild, actor_id: str) -> bool:
    return guild.owner_id == actor_id


def meets_floor(membership: Optional[GuildMembership], floor: GuildRole) -> bool:
    if membership is None or membership.status != MembershipStatus.APPROVED:
        return False
    return role_weight(membership.role) >= role_weight(floor)


def check(
    guild: Guild,
    actor_id: str,
    membership: Optional[GuildMembership],
    floor: GuildRole,
) -> bool:
    """Owner identity OR an approved role at or above ``floor``."""
    return is_owner(guild, actor_id) or meets_floor(membership, floor)


def effective_weight(
    guild: Guild,
    actor_id: str,
    membership: Optional[GuildMembership],
) -> int:
    """
    Weight used when comparing an actor against a target.

    The owner always compares as OWNER; anyone else by their approved role,
    or 0 without an approved membership.
    """
    if is_owner(guild, actor_id):
        return role_weight(GuildRole.OWNER)
    if membership is None or membership.status != MembershipStatus.APPROVED:
        return 0
    return role_weight(membership.role)


class GuildPermissionService(BaseService):
    """
    Membership lookup plus the authorization gate used by every guild service.

    Business Logic:
    - The gate runs inside the caller's transaction so the decision and the
      mutation see the same rows
    - Denials raise ForbiddenError carrying the action, guild and actor
    """

    def __init__(
        self,
        config_manager: Type[ConfigManager],
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._membership_repo = MembershipRepository(self.log)

    async def get_membership(
        self,
        session: AsyncSession,
        guild_id: str,
        user_id: str,
        for_update: bool = False,
    ) -> Optional[GuildMembership]:
        return await self._membership_repo.find_for_user(
            session, guild_id, user_id, for_update=for_update
        )

    async def require(
        self,
        session: AsyncSession,
        guild: Guild,
        actor_id: str,
        floor: GuildRole,
        action: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[GuildMembership]:
        """
        Authorize ``actor_id`` for ``action`` on ``guild``.

        Args:
            session: Transactional session of the calling operation
            guild: The guild being acted on
            actor_id: User attempting the action
            floor: Minimum role required for non-owners
            action: Stable action name, e.g. "guild.update"
            details: Extra identifiers for the error payload

        Returns:
            The actor's membership (None for an owner without a membership row)

        Raises:
            ForbiddenError: If neither owner identity nor role floor is satisfied
        """
        membership = await self.get_membership(session, guild.id, actor_id)

        if check(guild, actor_id, membership, floor):
            return membership

        self.log.info(
            "Guild action denied",
            extra={
                "action": action,
                "guild_id": guild.id,
                "user_id": actor_id,
                "required_role": floor.value,
                "actor_role": membership.role.value if membership else None,
            },
        )
        raise ForbiddenError(
            action,
            f"Requires {floor.value} or higher",
            details={"guild_id": guild.id, "actor_id": actor_id, **(details or {})},
        )
