"""
GuildMemberService - Membership lifecycle
=========================================

Handles:
- Self-service join (idempotent)
- Leaving a guild (owner blocked)
- Role assignment under strict role-weight rules

Every change to the set of APPROVED memberships adjusts ``member_count``
atomically in the same transaction.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional, Tuple, Type

from sqlalchemy.exc import IntegrityError

from guildhall.core.database.base import utc_now
from guildhall.core.database.service import DatabaseService
from guildhall.core.validation.input_validator import InputValidator
from guildhall.database.models import Guild, GuildMembership, GuildRole, MembershipStatus
from guildhall.modules.guild.invite_service import activate_membership
from guildhall.modules.guild.permission_service import (
    MANAGE_FLOOR,
    GuildPermissionService,
    effective_weight,
    is_owner,
)
from guildhall.modules.guild.repository import GuildRepository, MembershipRepository
from guildhall.modules.guild.roles import parse_role, role_weight
from guildhall.modules.guild.settings import GuildSettings
from guildhall.modules.shared.base_service import BaseService
from guildhall.modules.shared.exceptions import ConflictError, ForbiddenError, NotFoundError

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from guildhall.core.config.manager import ConfigManager
    from guildhall.core.event.bus import EventBus

JOINED = "joined"
JOIN_REQUESTED = "requested"


class GuildMemberService(BaseService):
    """
    Membership lifecycle orchestrator.

    Business Logic:
    - join: no row -> APPROVED MEMBER; PENDING invite -> approved (expiry not
      checked, joining needs no invitation); APPROVED -> unchanged;
      REVOKED -> re-activated as MEMBER. With requireApproval anything but
      a pending invite becomes a tokenless PENDING join request instead
    - leave: only APPROVED members; the owner must transfer ownership first
    - assign_role: MODERATOR gate, OWNER is never granted or taken here, and
      the actor must strictly outrank both the target's current role and
      the new role
    """

    def __init__(
        self,
        config_manager: Type[ConfigManager],
        event_bus: EventBus,
        logger: Logger,
        permissions: GuildPermissionService,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._permissions = permissions
        self._guild_repo = GuildRepository(self.log)
        self._membership_repo = MembershipRepository(self.log)

    async def _load_guild_for_update(self, session: AsyncSession, guild_id: str) -> Guild:
        guild = await self._guild_repo.get_for_update(session, guild_id)
        if guild is None:
            raise NotFoundError("Guild", guild_id)
        return guild

    # ========================================================================
    # JOIN / LEAVE
    # ========================================================================

    async def join(self, guild_id: str, user_id: str) -> GuildMembership:
        """
        Join a guild. Joining again is a no-op that returns the existing row.

        On a guild with ``requireApproval`` a user without an invitation gets
        a PENDING MEMBER row instead (no token, no expiry) that a moderator
        approves through ``GuildInviteService.approve_for_user``. Asking
        again while that request is open returns it unchanged.

        Returns:
            The user's APPROVED membership, or their PENDING join request

        Raises:
            NotFoundError: Guild does not exist
        """
        guild_id = InputValidator.validate_id(guild_id, "guild_id")
        user_id = InputValidator.validate_id(user_id, "user_id")

        async def work(session: AsyncSession) -> Tuple[GuildMembership, Optional[str]]:
            guild = await self._load_guild_for_update(session, guild_id)
            membership = await self._membership_repo.find_for_user(
                session, guild_id, user_id, for_update=True
            )

            if membership is not None and membership.status == MembershipStatus.APPROVED:
                return membership, None

            invited = (
                membership is not None
                and membership.status == MembershipStatus.PENDING
                and membership.invitation_token is not None
            )
            if not invited and GuildSettings.from_mapping(guild.settings).require_approval:
                if membership is not None and membership.status == MembershipStatus.PENDING:
                    return membership, None
                membership = await self._open_join_request(session, membership, guild_id, user_id)
                return membership, JOIN_REQUESTED

            now = utc_now()
            if membership is None:
                membership = self._membership_repo.add(
                    session,
                    GuildMembership(
                        guild_id=guild_id,
                        user_id=user_id,
                        role=GuildRole.MEMBER,
                        status=MembershipStatus.APPROVED,
                        joined_at=now,
                    ),
                )
            else:
                if membership.status == MembershipStatus.REVOKED:
                    membership.role = GuildRole.MEMBER
                activate_membership(membership, now)

            await self._flush_membership(session, guild_id, user_id)
            await self._guild_repo.adjust_member_count(session, guild, 1)
            return membership, JOINED

        try:
            membership, outcome = await DatabaseService.run_in_transaction(
                work,
                operation_name="guild.join",
                context={"guild_id": guild_id, "user_id": user_id},
            )
        except ConflictError:
            # A concurrent join inserted the row first; the re-run finds it.
            membership, outcome = await DatabaseService.run_in_transaction(
                work,
                operation_name="guild.join",
                context={"guild_id": guild_id, "user_id": user_id},
            )

        if outcome == JOINED:
            self.log_operation("join", guild_id=guild_id, user_id=user_id)
            await self.emit_event(
                "guild.member_joined",
                {"guild_id": guild_id, "user_id": user_id, "role": membership.role.value},
            )
        elif outcome == JOIN_REQUESTED:
            self.log_operation("request_join", guild_id=guild_id, user_id=user_id)
            await self.emit_event(
                "guild.join_requested", {"guild_id": guild_id, "user_id": user_id}
            )
        return membership

    async def _open_join_request(
        self,
        session: AsyncSession,
        membership: Optional[GuildMembership],
        guild_id: str,
        user_id: str,
    ) -> GuildMembership:
        if membership is None:
            membership = self._membership_repo.add(
                session,
                GuildMembership(guild_id=guild_id, user_id=user_id, role=GuildRole.MEMBER),
            )
        membership.status = MembershipStatus.PENDING
        membership.role = GuildRole.MEMBER
        membership.invitation_token = None
        membership.invitation_expires_at = None
        membership.invited_by_id = None
        membership.joined_at = None
        await self._flush_membership(session, guild_id, user_id)
        return membership

    async def _flush_membership(self, session: AsyncSession, guild_id: str, user_id: str) -> None:
        try:
            await self._membership_repo.flush(session)
        except IntegrityError:
            raise ConflictError(
                "Membership was created concurrently",
                details={"guild_id": guild_id, "user_id": user_id},
            ) from None

    async def leave(self, guild_id: str, user_id: str) -> None:
        """
        Leave a guild.

        Raises:
            NotFoundError: Guild missing or the user is not an approved member
            ForbiddenError: The user owns the guild
        """
        guild_id = InputValidator.validate_id(guild_id, "guild_id")
        user_id = InputValidator.validate_id(user_id, "user_id")

        async def work(session: AsyncSession) -> GuildRole:
            guild = await self._load_guild_for_update(session, guild_id)
            membership = await self._membership_repo.find_for_user(
                session, guild_id, user_id, for_update=True
            )
            if membership is None or membership.status != MembershipStatus.APPROVED:
                raise NotFoundError("Membership", user_id, details={"guild_id": guild_id})

            if membership.role == GuildRole.OWNER or is_owner(guild, user_id):
                raise ForbiddenError(
                    "guild.leave",
                    "The owner cannot leave the guild; transfer ownership first",
                    details={"guild_id": guild_id, "user_id": user_id},
                )

            role = membership.role
            await self._membership_repo.delete(session, membership)
            await self._membership_repo.flush(session)
            await self._guild_repo.adjust_member_count(session, guild, -1)
            return role

        role = await DatabaseService.run_in_transaction(
            work,
            operation_name="guild.leave",
            context={"guild_id": guild_id, "user_id": user_id},
        )

        self.log_operation("leave", guild_id=guild_id, user_id=user_id)
        await self.emit_event(
            "guild.member_left",
            {"guild_id": guild_id, "user_id": user_id, "role": role.value},
        )

    # ========================================================================
    # ROLES
    # ========================================================================

    async def assign_role(
        self,
        guild_id: str,
        target_user_id: str,
        new_role: Any,
        actor_id: str,
    ) -> GuildMembership:
        """
        Change an approved member's role.

        Args:
            guild_id: Guild the membership belongs to
            target_user_id: Member whose role changes
            new_role: GuildRole or role name (not OWNER)
            actor_id: Acting user

        Returns:
            The updated membership

        Raises:
            InvalidInputError: Unknown role name
            ForbiddenError: Actor below MODERATOR, OWNER involved on either
                side, or actor does not strictly outrank target and new role
            NotFoundError: Guild missing or target is not an approved member
        """
        guild_id = InputValidator.validate_id(guild_id, "guild_id")
        target_user_id = InputValidator.validate_id(target_user_id, "target_user_id")
        actor_id = InputValidator.validate_id(actor_id, "actor_id")
        role = parse_role(new_role, "new_role")

        async def work(session: AsyncSession) -> Tuple[GuildMembership, GuildRole]:
            guild = await self._load_guild_for_update(session, guild_id)
            details = {
                "guild_id": guild_id,
                "actor_id": actor_id,
                "target_user_id": target_user_id,
                "new_role": role.value,
            }

            actor_membership = await self._permissions.require(
                session, guild, actor_id, MANAGE_FLOOR, "guild.assign_role", details=details
            )

            if role == GuildRole.OWNER:
                raise ForbiddenError(
                    "guild.assign_role",
                    "OWNER can only be granted through ownership transfer",
                    details=details,
                )

            target = await self._membership_repo.find_for_user(
                session, guild_id, target_user_id, for_update=True
            )
            if target is None or target.status != MembershipStatus.APPROVED:
                raise NotFoundError("Membership", target_user_id, details={"guild_id": guild_id})

            if target.role == GuildRole.OWNER or is_owner(guild, target_user_id):
                raise ForbiddenError(
                    "guild.assign_role",
                    "The owner's role cannot be changed",
                    details=details,
                )

            actor_weight = effective_weight(guild, actor_id, actor_membership)
            if actor_weight <= role_weight(target.role):
                raise ForbiddenError(
                    "guild.assign_role",
                    "Cannot change the role of a member with equal or higher rank",
                    details={**details, "target_role": target.role.value},
                )
            if actor_weight <= role_weight(role):
                raise ForbiddenError(
                    "guild.assign_role",
                    "Cannot grant a role equal to or above your own",
                    details=details,
                )

            previous = target.role
            target.role = role
            await self._membership_repo.flush(session)
            return target, previous

        membership, previous = await DatabaseService.run_in_transaction(
            work,
            operation_name="guild.assign_role",
            context={"guild_id": guild_id, "user_id": actor_id},
        )

        self.log_operation(
            "assign_role",
            guild_id=guild_id,
            user_id=actor_id,
            target_user_id=target_user_id,
            previous_role=previous.value,
            new_role=role.value,
        )
        if previous != role:
            await self.emit_event(
                "guild.role_assigned",
                {
                    "guild_id": guild_id,
                    "user_id": target_user_id,
                    "actor_id": actor_id,
                    "previous_role": previous.value,
                    "new_role": role.value,
                },
            )
        return membership
