"""
GuildInviteService - Business logic for guild invitations
=========================================================

Handles:
- Inviting a user (token + expiry), re-arming a previously revoked row
- Revoking by token, or by user (managers, or the invitee themselves)
- Approving by token, or by the invitee without the token
- Resending the invitation notification
- Listing pending invitations

Expiry is lazy: nothing sweeps old invites. Every approval path asks the
single ``invite_usability`` predicate whether an invite can still be used.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple, Type

from sqlalchemy.exc import IntegrityError

from guildhall.core.config.config import Config
from guildhall.core.database.base import utc_now
from guildhall.core.database.service import DatabaseService
from guildhall.core.validation.input_validator import InputValidator
from guildhall.database.models import Guild, GuildMembership, GuildRole, MembershipStatus
from guildhall.modules.guild.permission_service import (
    MANAGE_FLOOR,
    GuildPermissionService,
    effective_weight,
)
from guildhall.modules.guild.repository import GuildRepository, MembershipRepository
from guildhall.modules.guild.roles import parse_role, role_weight
from guildhall.modules.shared.base_service import BaseService
from guildhall.modules.shared.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    InviteExpiredError,
    NotFoundError,
)

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from guildhall.core.config.manager import ConfigManager
    from guildhall.core.event.bus import EventBus

INVITE_NOT_FOUND = "not_found"
INVITE_EXPIRED = "expired"

TOKEN_BYTES = 32


# ========================================================================
# INVITE STATE
# ========================================================================


def invite_usability(
    membership: Optional[GuildMembership],
    now: datetime,
    token: Optional[str] = None,
) -> Optional[str]:
    """
    Why an invitation cannot be used right now, or None if it can.

    Args:
        membership: The membership the invite lives on (may be None)
        now: Current time (aware UTC)
        token: When given, must match the stored token

    Returns:
        ``"not_found"`` if missing, not PENDING or the token does not match;
        ``"expired"`` if past its expiry; ``None`` when usable
    """
    if membership is None or membership.status != MembershipStatus.PENDING:
        return INVITE_NOT_FOUND

    if token is not None:
        stored = membership.invitation_token
        if stored is None or not secrets.compare_digest(stored, token):
            return INVITE_NOT_FOUND

    expires_at = membership.invitation_expires_at
    if expires_at is not None and expires_at < now:
        return INVITE_EXPIRED

    return None


def activate_membership(membership: GuildMembership, now: datetime) -> None:
    """Move a membership to APPROVED and consume any outstanding invitation."""
    membership.status = MembershipStatus.APPROVED
    membership.joined_at = now
    membership.invitation_token = None
    membership.invitation_expires_at = None


def _revoke_membership(membership: GuildMembership) -> None:
    membership.status = MembershipStatus.REVOKED
    membership.invitation_token = None
    membership.invitation_expires_at = None


class GuildInviteService(BaseService):
    """
    Invitation workflow for guild memberships.

    Business Logic:
    - Inviting, revoking others' invites, approving on someone's behalf and
      resending all need MODERATOR or higher (owner always allowed)
    - Nobody is invited as OWNER
    - One membership row per (user, guild): PENDING or APPROVED blocks a new
      invite, a REVOKED row is re-armed
    - Tokens are single use; approval clears them, so a replay is NotFound
    - Approval increments member_count atomically in the same transaction
    - Notification happens from events published after commit
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

    def _invite_ttl(self) -> timedelta:
        days = self.get_config_int(
            "guilds.invite_ttl_days", Config.INVITE_TTL_DAYS, min_value=1
        )
        return timedelta(days=days)

    async def _load_guild(
        self, session: AsyncSession, guild_id: str, for_update: bool = False
    ) -> Guild:
        if for_update:
            guild = await self._guild_repo.get_for_update(session, guild_id)
        else:
            guild = await self._guild_repo.get(session, guild_id)
        if guild is None:
            raise NotFoundError("Guild", guild_id)
        return guild

    async def _approve(
        self, session: AsyncSession, guild: Guild, membership: GuildMembership
    ) -> None:
        activate_membership(membership, utc_now())
        await self._membership_repo.flush(session)
        await self._guild_repo.adjust_member_count(session, guild, 1)

    @staticmethod
    def _invite_payload(guild: Guild, membership: GuildMembership) -> Dict[str, Any]:
        expires_at = membership.invitation_expires_at
        return {
            "guild_id": guild.id,
            "guild_name": guild.name,
            "user_id": membership.user_id,
            "inviter_id": membership.invited_by_id,
            "role": membership.role.value,
            "token": membership.invitation_token,
            "expires_at": expires_at.isoformat() if expires_at else None,
        }

    # ========================================================================
    # INVITE
    # ========================================================================

    async def invite(
        self,
        guild_id: str,
        target_user_id: str,
        inviter_id: str,
        role: Any = GuildRole.MEMBER,
    ) -> Dict[str, Any]:
        """
        Invite a user to a guild.

        Args:
            guild_id: Guild to invite into
            target_user_id: User being invited
            inviter_id: Acting user (MODERATOR or higher, or the owner)
            role: Role granted on approval (never OWNER)

        Returns:
            ``{"membership": GuildMembership, "token": str, "expires_at": datetime}``

        Raises:
            InvalidInputError: Bad ids, unknown role or role OWNER
            NotFoundError: Guild does not exist
            ForbiddenError: Inviter lacks MODERATOR or does not outrank ``role``
            ConflictError: Target already has a pending invite or is a member
        """
        guild_id = InputValidator.validate_id(guild_id, "guild_id")
        target_user_id = InputValidator.validate_id(target_user_id, "target_user_id")
        inviter_id = InputValidator.validate_id(inviter_id, "inviter_id")
        invite_role = parse_role(role)
        if invite_role == GuildRole.OWNER:
            raise InvalidInputError(
                "role", "Cannot invite as OWNER; use ownership transfer instead"
            )

        ttl = self._invite_ttl()

        async def work(session: AsyncSession) -> Tuple[Guild, GuildMembership]:
            guild = await self._load_guild(session, guild_id)
            inviter_membership = await self._permissions.require(
                session,
                guild,
                inviter_id,
                MANAGE_FLOOR,
                "guild.invite",
                details={"target_user_id": target_user_id},
            )
            # Same ceiling as assign_role: only roles strictly below the inviter.
            if effective_weight(guild, inviter_id, inviter_membership) <= role_weight(invite_role):
                raise ForbiddenError(
                    "guild.invite",
                    "Cannot invite into a role equal to or above your own",
                    details={
                        "guild_id": guild_id,
                        "actor_id": inviter_id,
                        "target_user_id": target_user_id,
                        "role": invite_role.value,
                    },
                )

            membership = await self._membership_repo.find_for_user(
                session, guild_id, target_user_id, for_update=True
            )
            if membership is not None and membership.status != MembershipStatus.REVOKED:
                raise ConflictError(
                    "User is already a member or has a pending invitation",
                    details={
                        "guild_id": guild_id,
                        "user_id": target_user_id,
                        "status": membership.status.value,
                    },
                    error_code="MEMBERSHIP_EXISTS",
                )

            token = secrets.token_urlsafe(TOKEN_BYTES)
            expires_at = utc_now() + ttl

            if membership is None:
                membership = self._membership_repo.add(
                    session,
                    GuildMembership(
                        guild_id=guild_id,
                        user_id=target_user_id,
                        role=invite_role,
                        status=MembershipStatus.PENDING,
                    ),
                )

            # A REVOKED row is re-armed in place; (user, guild) is unique.
            membership.status = MembershipStatus.PENDING
            membership.role = invite_role
            membership.invitation_token = token
            membership.invitation_expires_at = expires_at
            membership.invited_by_id = inviter_id
            membership.joined_at = None

            try:
                await self._membership_repo.flush(session)
            except IntegrityError:
                raise ConflictError(
                    "User is already a member or has a pending invitation",
                    details={"guild_id": guild_id, "user_id": target_user_id},
                    error_code="MEMBERSHIP_EXISTS",
                ) from None

            return guild, membership

        guild, membership = await DatabaseService.run_in_transaction(
            work,
            operation_name="guild.invite",
            context={"guild_id": guild_id, "user_id": inviter_id},
        )

        self.log_operation(
            "invite",
            guild_id=guild_id,
            user_id=inviter_id,
            target_user_id=target_user_id,
            role=invite_role.value,
        )
        await self.emit_event("guild.invite_created", self._invite_payload(guild, membership))

        return {
            "membership": membership,
            "token": membership.invitation_token,
            "expires_at": membership.invitation_expires_at,
        }

    # ========================================================================
    # REVOKE
    # ========================================================================

    async def revoke_by_token(
        self, guild_id: str, token: str, revoker_id: str
    ) -> GuildMembership:
        """
        Revoke a pending invitation identified by its token.

        Raises:
            NotFoundError: Guild missing, or no PENDING invite holds this token
            ForbiddenError: Revoker lacks MODERATOR
        """
        guild_id = InputValidator.validate_id(guild_id, "guild_id")
        token = InputValidator.validate_string(token, "token", min_length=1)
        revoker_id = InputValidator.validate_id(revoker_id, "revoker_id")

        async def work(session: AsyncSession) -> Tuple[Guild, GuildMembership]:
            guild = await self._load_guild(session, guild_id)
            await self._permissions.require(
                session, guild, revoker_id, MANAGE_FLOOR, "guild.invite.revoke"
            )

            membership = await self._membership_repo.find_by_token(
                session, guild_id, token, for_update=True
            )
            if invite_usability(membership, utc_now(), token) == INVITE_NOT_FOUND:
                raise NotFoundError("Invite", details={"guild_id": guild_id})
            assert membership is not None

            _revoke_membership(membership)
            await self._membership_repo.flush(session)
            return guild, membership

        guild, membership = await DatabaseService.run_in_transaction(
            work,
            operation_name="guild.invite.revoke",
            context={"guild_id": guild_id, "user_id": revoker_id},
        )
        await self._after_revoke(guild, membership, revoker_id)
        return membership

    async def revoke_for_user(
        self, guild_id: str, user_id: str, revoker_id: str
    ) -> GuildMembership:
        """
        Revoke the pending invitation of ``user_id``.

        The invitee may cancel their own invitation; anyone else needs
        MODERATOR.

        Raises:
            NotFoundError: Guild missing, or the user has no PENDING invite
            ForbiddenError: Revoker is someone else without MODERATOR
        """
        guild_id = InputValidator.validate_id(guild_id, "guild_id")
        user_id = InputValidator.validate_id(user_id, "user_id")
        revoker_id = InputValidator.validate_id(revoker_id, "revoker_id")

        async def work(session: AsyncSession) -> Tuple[Guild, GuildMembership]:
            guild = await self._load_guild(session, guild_id)
            if revoker_id != user_id:
                await self._permissions.require(
                    session,
                    guild,
                    revoker_id,
                    MANAGE_FLOOR,
                    "guild.invite.revoke",
                    details={"target_user_id": user_id},
                )

            membership = await self._membership_repo.find_for_user(
                session, guild_id, user_id, for_update=True
            )
            if invite_usability(membership, utc_now()) == INVITE_NOT_FOUND:
                raise NotFoundError("Invite", details={"guild_id": guild_id, "user_id": user_id})
            assert membership is not None

            _revoke_membership(membership)
            await self._membership_repo.flush(session)
            return guild, membership

        guild, membership = await DatabaseService.run_in_transaction(
            work,
            operation_name="guild.invite.revoke",
            context={"guild_id": guild_id, "user_id": revoker_id},
        )
        await self._after_revoke(guild, membership, revoker_id)
        return membership

    async def _after_revoke(
        self, guild: Guild, membership: GuildMembership, revoker_id: str
    ) -> None:
        self.log_operation(
            "revoke_invite",
            guild_id=guild.id,
            user_id=revoker_id,
            target_user_id=membership.user_id,
        )
        await self.emit_event(
            "guild.invite_revoked",
            {
                "guild_id": guild.id,
                "guild_name": guild.name,
                "user_id": membership.user_id,
                "revoker_id": revoker_id,
            },
        )

    # ========================================================================
    # APPROVE
    # ========================================================================

    async def approve_by_token(
        self, guild_id: str, token: str, approver_id: str
    ) -> GuildMembership:
        """
        Approve a pending invitation identified by its token.

        The invitee approves their own invite; anyone else approving on the
        invitee's behalf needs MODERATOR.

        Raises:
            NotFoundError: Guild missing, token unknown or already used
            ForbiddenError: Approver is not the invitee and lacks MODERATOR
            InviteExpiredError: The invitation is past its expiry
        """
        guild_id = InputValidator.validate_id(guild_id, "guild_id")
        token = InputValidator.validate_string(token, "token", min_length=1)
        approver_id = InputValidator.validate_id(approver_id, "approver_id")

        async def work(session: AsyncSession) -> GuildMembership:
            guild = await self._load_guild(session, guild_id, for_update=True)
            membership = await self._membership_repo.find_by_token(
                session, guild_id, token, for_update=True
            )

            reason = invite_usability(membership, utc_now(), token)
            if reason == INVITE_NOT_FOUND:
                raise NotFoundError("Invite", details={"guild_id": guild_id})
            assert membership is not None

            if approver_id != membership.user_id:
                await self._permissions.require(
                    session,
                    guild,
                    approver_id,
                    MANAGE_FLOOR,
                    "guild.invite.approve",
                    details={"target_user_id": membership.user_id},
                )

            if reason == INVITE_EXPIRED:
                raise InviteExpiredError(
                    guild_id, membership.user_id, membership.invitation_expires_at
                )

            await self._approve(session, guild, membership)
            return membership

        membership = await DatabaseService.run_in_transaction(
            work,
            operation_name="guild.invite.approve",
            context={"guild_id": guild_id, "user_id": approver_id},
        )
        await self._after_approve(membership, approver_id)
        return membership

    async def approve_for_user(
        self, guild_id: str, user_id: str, approver_id: Optional[str] = None
    ) -> GuildMembership:
        """
        Approve ``user_id``'s pending membership without the token.

        The invitee may accept their own invitation. A join request (PENDING
        without a token, see ``GuildMemberService.join``) and any approval on
        someone else's behalf need a MODERATOR approver.

        Args:
            guild_id: Guild of the membership
            user_id: User whose membership is approved
            approver_id: Acting user; the user themselves when omitted

        Raises:
            NotFoundError: Guild missing or the user has nothing PENDING
            ForbiddenError: Approver lacks MODERATOR where it is needed
            InviteExpiredError: The invitation is past its expiry
        """
        guild_id = InputValidator.validate_id(guild_id, "guild_id")
        user_id = InputValidator.validate_id(user_id, "user_id")
        if approver_id is None:
            approver_id = user_id
        approver_id = InputValidator.validate_id(approver_id, "approver_id")

        async def work(session: AsyncSession) -> GuildMembership:
            guild = await self._load_guild(session, guild_id, for_update=True)
            membership = await self._membership_repo.find_for_user(
                session, guild_id, user_id, for_update=True
            )

            reason = invite_usability(membership, utc_now())
            if reason == INVITE_NOT_FOUND:
                raise NotFoundError("Invite", details={"guild_id": guild_id, "user_id": user_id})
            assert membership is not None

            if approver_id != user_id:
                await self._permissions.require(
                    session,
                    guild,
                    approver_id,
                    MANAGE_FLOOR,
                    "guild.invite.approve",
                    details={"target_user_id": user_id},
                )
            elif membership.invitation_token is None:
                raise ForbiddenError(
                    "guild.join.approve",
                    "A join request must be approved by a moderator",
                    details={"guild_id": guild_id, "user_id": user_id},
                )

            if reason == INVITE_EXPIRED:
                raise InviteExpiredError(guild_id, user_id, membership.invitation_expires_at)

            await self._approve(session, guild, membership)
            return membership

        membership = await DatabaseService.run_in_transaction(
            work,
            operation_name="guild.invite.approve",
            context={"guild_id": guild_id, "user_id": approver_id},
        )
        await self._after_approve(membership, approver_id)
        return membership

    async def _after_approve(self, membership: GuildMembership, approver_id: str) -> None:
        self.log_operation(
            "approve_invite",
            guild_id=membership.guild_id,
            user_id=approver_id,
            target_user_id=membership.user_id,
        )
        await self.emit_event(
            "guild.invite_accepted",
            {
                "guild_id": membership.guild_id,
                "user_id": membership.user_id,
                "approver_id": approver_id,
                "role": membership.role.value,
            },
        )

    # ========================================================================
    # RESEND / LIST
    # ========================================================================

    async def resend(self, guild_id: str, user_id: str, actor_id: str) -> Dict[str, Any]:
        """
        Re-send the invitation notification with the same token and expiry.

        Raises:
            NotFoundError: Guild missing or the user has no PENDING invite
            ForbiddenError: Actor lacks MODERATOR
            InvalidInputError: The pending invite carries no token
        """
        guild_id = InputValidator.validate_id(guild_id, "guild_id")
        user_id = InputValidator.validate_id(user_id, "user_id")
        actor_id = InputValidator.validate_id(actor_id, "actor_id")

        async with DatabaseService.get_session() as session:
            guild = await self._load_guild(session, guild_id)
            await self._permissions.require(
                session,
                guild,
                actor_id,
                MANAGE_FLOOR,
                "guild.invite.resend",
                details={"target_user_id": user_id},
            )
            membership = await self._membership_repo.find_for_user(session, guild_id, user_id)

        if membership is None or membership.status != MembershipStatus.PENDING:
            raise NotFoundError("Invite", details={"guild_id": guild_id, "user_id": user_id})
        if not membership.invitation_token:
            raise InvalidInputError(
                "invitation_token",
                "Pending invitation has no token to resend",
                details={"guild_id": guild_id, "user_id": user_id},
            )

        self.log_operation(
            "resend_invite", guild_id=guild_id, user_id=actor_id, target_user_id=user_id
        )
        await self.emit_event("guild.invite_resent", self._invite_payload(guild, membership))

        return {
            "membership": membership,
            "token": membership.invitation_token,
            "expires_at": membership.invitation_expires_at,
        }

    async def list_pending_invites(self, guild_id: str, actor_id: str) -> List[Dict[str, Any]]:
        """
        Pending invitations of a guild, oldest first.

        Returns:
            ``[{"membership", "user_id", "role", "expires_at", "expired"}, ...]``
        """
        guild_id = InputValidator.validate_id(guild_id, "guild_id")
        actor_id = InputValidator.validate_id(actor_id, "actor_id")

        async with DatabaseService.get_session() as session:
            guild = await self._load_guild(session, guild_id)
            await self._permissions.require(
                session, guild, actor_id, MANAGE_FLOOR, "guild.invite.list"
            )
            pending = await self._membership_repo.list_by_status(
                session, guild_id, MembershipStatus.PENDING
            )

        now = utc_now()
        return [
            {
                "membership": membership,
                "user_id": membership.user_id,
                "role": membership.role,
                "expires_at": membership.invitation_expires_at,
                "expired": invite_usability(membership, now) == INVITE_EXPIRED,
            }
            for membership in pending
        ]
