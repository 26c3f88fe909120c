"""
Integration tests for GuildInviteService.

Covers the full invitation lifecycle against a real database: invite,
approve (token and tokenless), revoke (token, user, self), lazy expiry,
re-invite of a revoked row, resend and pending listing, plus the
post-commit notification listener.
"""

from datetime import timedelta

import pytest

from guildhall.core.config.errors import ConfigurationError
from guildhall.core.config.manager import ConfigManager
from guildhall.core.database.base import utc_now
from guildhall.database.models import GuildRole, MembershipStatus
from guildhall.modules.shared.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    InviteExpiredError,
    NotFoundError,
)


@pytest.fixture
async def guild(engine):
    return await engine.guilds.create_guild("Cosmic Explorers", "u1")


# ============================================================================
# INVITE
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestInvite:
    async def test_invite_creates_pending_membership(self, engine, guild, events, notifier):
        """Invite stores a PENDING row with a token and a seven day expiry."""
        # Act
        before = utc_now()
        result = await engine.invites.invite(guild.id, "u2", "u1")

        # Assert
        membership = result["membership"]
        assert membership.status == MembershipStatus.PENDING
        assert membership.role == GuildRole.MEMBER
        assert membership.invited_by_id == "u1"
        assert membership.joined_at is None
        assert result["token"] and len(result["token"]) >= 32
        assert timedelta(days=7) - timedelta(minutes=1) <= result["expires_at"] - before
        assert result["expires_at"] - before <= timedelta(days=7, minutes=1)

        assert "guild.invite_created" in events.names()
        assert notifier.invites == [("u2@example.test", "Cosmic Explorers", result["token"])]

    async def test_invite_does_not_change_member_count(self, engine, guild, member_counts):
        await engine.invites.invite(guild.id, "u2", "u1")

        assert await member_counts(guild.id) == (1, 1)

    async def test_invite_with_role(self, engine, guild):
        result = await engine.invites.invite(guild.id, "u2", "u1", role="moderator")

        assert result["membership"].role == GuildRole.MODERATOR

    async def test_tokens_are_unique(self, engine, guild):
        first = await engine.invites.invite(guild.id, "u2", "u1")
        second = await engine.invites.invite(guild.id, "u3", "u1")

        assert first["token"] != second["token"]

    async def test_cannot_invite_as_owner(self, engine, guild):
        with pytest.raises(InvalidInputError):
            await engine.invites.invite(guild.id, "u2", "u1", role=GuildRole.OWNER)

    async def test_unknown_role_rejected(self, engine, guild):
        with pytest.raises(InvalidInputError):
            await engine.invites.invite(guild.id, "u2", "u1", role="emperor")

    @pytest.mark.parametrize("first_step", ["invite", "join"])
    async def test_existing_membership_conflicts(self, engine, guild, first_step):
        if first_step == "invite":
            await engine.invites.invite(guild.id, "u2", "u1")
        else:
            await engine.members.join(guild.id, "u2")

        with pytest.raises(ConflictError) as exc_info:
            await engine.invites.invite(guild.id, "u2", "u1")

        assert exc_info.value.error_code == "MEMBERSHIP_EXISTS"

    async def test_plain_member_cannot_invite(self, engine, guild):
        await engine.members.join(guild.id, "u2")

        with pytest.raises(ForbiddenError):
            await engine.invites.invite(guild.id, "u3", "u2")

    async def test_moderator_can_invite(self, engine, guild):
        await engine.members.join(guild.id, "u2")
        await engine.members.assign_role(guild.id, "u2", GuildRole.MODERATOR, "u1")

        result = await engine.invites.invite(guild.id, "u3", "u2")

        assert result["membership"].invited_by_id == "u2"

    @pytest.mark.parametrize("role", [GuildRole.MODERATOR, GuildRole.ADMIN])
    async def test_moderator_cannot_invite_at_or_above_own_role(
        self, engine, guild, member_counts, role
    ):
        """Invited role must sit strictly below the inviter's role."""
        await engine.members.join(guild.id, "u2")
        await engine.members.assign_role(guild.id, "u2", GuildRole.MODERATOR, "u1")

        with pytest.raises(ForbiddenError):
            await engine.invites.invite(guild.id, "u3", "u2", role=role)

        pending = await engine.guilds.list_members(guild.id, MembershipStatus.PENDING)
        assert "u3" not in [m.user_id for m in pending]
        assert await member_counts(guild.id) == (2, 2)

    async def test_admin_can_invite_moderator(self, engine, guild):
        await engine.members.join(guild.id, "u2")
        await engine.members.assign_role(guild.id, "u2", GuildRole.ADMIN, "u1")

        result = await engine.invites.invite(guild.id, "u3", "u2", role=GuildRole.MODERATOR)

        assert result["membership"].role == GuildRole.MODERATOR

    async def test_missing_guild(self, engine):
        with pytest.raises(NotFoundError):
            await engine.invites.invite("nope", "u2", "u1")

    async def test_ttl_follows_config(self, engine, guild):
        ConfigManager.set("guilds.invite_ttl_days", 2)
        before = utc_now()

        result = await engine.invites.invite(guild.id, "u2", "u1")

        assert result["expires_at"] - before <= timedelta(days=2, minutes=1)

    async def test_misconfigured_ttl_is_reported(self, engine, guild):
        ConfigManager.set("guilds.invite_ttl_days", "soon")

        with pytest.raises(ConfigurationError):
            await engine.invites.invite(guild.id, "u2", "u1")


# ============================================================================
# APPROVE
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestApprove:
    async def test_invitee_approves_by_token(self, engine, guild, events, member_counts):
        # Arrange
        invite = await engine.invites.invite(guild.id, "u2", "u1", role="moderator")

        # Act
        membership = await engine.invites.approve_by_token(guild.id, invite["token"], "u2")

        # Assert
        assert membership.status == MembershipStatus.APPROVED
        assert membership.role == GuildRole.MODERATOR
        assert membership.joined_at is not None
        assert membership.invitation_token is None
        assert membership.invitation_expires_at is None
        assert await member_counts(guild.id) == (2, 2)
        assert "guild.invite_accepted" in events.names()

    async def test_token_is_single_use(self, engine, guild, member_counts):
        invite = await engine.invites.invite(guild.id, "u2", "u1")
        await engine.invites.approve_by_token(guild.id, invite["token"], "u2")

        with pytest.raises(NotFoundError):
            await engine.invites.approve_by_token(guild.id, invite["token"], "u2")

        assert await member_counts(guild.id) == (2, 2)

    async def test_unknown_token(self, engine, guild):
        with pytest.raises(NotFoundError):
            await engine.invites.approve_by_token(guild.id, "not-a-token", "u2")

    async def test_token_from_another_guild(self, engine, guild):
        other = await engine.guilds.create_guild("Deep Sea Divers", "u1")
        invite = await engine.invites.invite(other.id, "u2", "u1")

        with pytest.raises(NotFoundError):
            await engine.invites.approve_by_token(guild.id, invite["token"], "u2")

    async def test_owner_approves_on_behalf(self, engine, guild):
        invite = await engine.invites.invite(guild.id, "u2", "u1")

        membership = await engine.invites.approve_by_token(guild.id, invite["token"], "u1")

        assert membership.user_id == "u2"
        assert membership.status == MembershipStatus.APPROVED

    async def test_third_party_cannot_approve(self, engine, guild, member_counts):
        await engine.members.join(guild.id, "u3")
        invite = await engine.invites.invite(guild.id, "u2", "u1")

        with pytest.raises(ForbiddenError):
            await engine.invites.approve_by_token(guild.id, invite["token"], "u3")

        assert await member_counts(guild.id) == (2, 2)

    async def test_expired_invite(self, engine, guild, expire_invite, member_counts):
        """Expiry is checked lazily when the invite is used."""
        invite = await engine.invites.invite(guild.id, "u2", "u1")
        await expire_invite(guild.id, "u2")

        with pytest.raises(InviteExpiredError):
            await engine.invites.approve_by_token(guild.id, invite["token"], "u2")
        with pytest.raises(InviteExpiredError):
            await engine.invites.approve_for_user(guild.id, "u2")

        pending = await engine.invites.list_pending_invites(guild.id, "u1")
        assert [p["expired"] for p in pending] == [True]
        assert await member_counts(guild.id) == (1, 1)

    async def test_approve_for_user(self, engine, guild, member_counts):
        await engine.invites.invite(guild.id, "u2", "u1")

        membership = await engine.invites.approve_for_user(guild.id, "u2")

        assert membership.status == MembershipStatus.APPROVED
        assert await member_counts(guild.id) == (2, 2)

    async def test_approve_for_user_without_invite(self, engine, guild):
        with pytest.raises(NotFoundError):
            await engine.invites.approve_for_user(guild.id, "u2")


# ============================================================================
# REVOKE
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestRevoke:
    async def test_revoke_by_token(self, engine, guild, notifier, events):
        invite = await engine.invites.invite(guild.id, "u2", "u1")

        membership = await engine.invites.revoke_by_token(guild.id, invite["token"], "u1")

        assert membership.status == MembershipStatus.REVOKED
        assert membership.invitation_token is None
        assert notifier.revokes == [("u2@example.test", "Cosmic Explorers")]
        assert "guild.invite_revoked" in events.names()

        with pytest.raises(NotFoundError):
            await engine.invites.approve_by_token(guild.id, invite["token"], "u2")

    async def test_revoke_by_token_needs_moderator(self, engine, guild):
        await engine.members.join(guild.id, "u3")
        invite = await engine.invites.invite(guild.id, "u2", "u1")

        with pytest.raises(ForbiddenError):
            await engine.invites.revoke_by_token(guild.id, invite["token"], "u3")

    async def test_invitee_revokes_own_invite(self, engine, guild):
        await engine.invites.invite(guild.id, "u2", "u1")

        membership = await engine.invites.revoke_for_user(guild.id, "u2", "u2")

        assert membership.status == MembershipStatus.REVOKED

    async def test_revoke_for_user_by_stranger(self, engine, guild):
        await engine.invites.invite(guild.id, "u2", "u1")

        with pytest.raises(ForbiddenError):
            await engine.invites.revoke_for_user(guild.id, "u2", "u4")

    async def test_approved_membership_cannot_be_revoked(self, engine, guild):
        await engine.members.join(guild.id, "u2")

        with pytest.raises(NotFoundError):
            await engine.invites.revoke_for_user(guild.id, "u2", "u1")

    async def test_reinvite_reuses_revoked_row(self, engine, guild):
        first = await engine.invites.invite(guild.id, "u2", "u1")
        await engine.invites.revoke_for_user(guild.id, "u2", "u1")

        second = await engine.invites.invite(guild.id, "u2", "u1", role="admin")

        assert second["membership"].id == first["membership"].id
        assert second["membership"].status == MembershipStatus.PENDING
        assert second["membership"].role == GuildRole.ADMIN
        assert second["token"] != first["token"]


# ============================================================================
# RESEND / LIST / NOTIFICATIONS
# ============================================================================


@pytest.mark.integration
@pytest.mark.database
class TestResendAndList:
    async def test_resend_uses_same_token(self, engine, guild, notifier):
        invite = await engine.invites.invite(guild.id, "u2", "u1")

        result = await engine.invites.resend(guild.id, "u2", "u1")

        assert result["token"] == invite["token"]
        assert result["expires_at"] == invite["expires_at"]
        assert len(notifier.invites) == 2
        assert notifier.invites[0] == notifier.invites[1]

    async def test_resend_without_pending_invite(self, engine, guild):
        with pytest.raises(NotFoundError):
            await engine.invites.resend(guild.id, "u2", "u1")

    async def test_resend_needs_moderator(self, engine, guild):
        await engine.invites.invite(guild.id, "u2", "u1")

        with pytest.raises(ForbiddenError):
            await engine.invites.resend(guild.id, "u2", "u2")

    async def test_list_pending(self, engine, guild):
        await engine.invites.invite(guild.id, "u2", "u1")
        await engine.invites.invite(guild.id, "u3", "u1", role="moderator")
        await engine.members.join(guild.id, "u4")

        pending = await engine.invites.list_pending_invites(guild.id, "u1")

        assert [(p["user_id"], p["role"], p["expired"]) for p in pending] == [
            ("u2", GuildRole.MEMBER, False),
            ("u3", GuildRole.MODERATOR, False),
        ]

    async def test_list_pending_needs_moderator(self, engine, guild):
        await engine.members.join(guild.id, "u2")

        with pytest.raises(ForbiddenError):
            await engine.invites.list_pending_invites(guild.id, "u2")


@pytest.mark.integration
@pytest.mark.database
class TestNotifications:
    async def test_failed_delivery_keeps_invite(self, engine, guild, notifier, member_counts):
        """A notifier failure is logged and the committed invite stays valid."""
        # Arrange
        notifier.fail_with = ConnectionError("smtp down")

        # Act
        invite = await engine.invites.invite(guild.id, "u2", "u1")

        # Assert
        assert notifier.invites == []
        notifier.fail_with = None
        membership = await engine.invites.approve_by_token(guild.id, invite["token"], "u2")
        assert membership.status == MembershipStatus.APPROVED
        assert await member_counts(guild.id) == (2, 2)

    async def test_unknown_address_is_skipped(self, engine, guild, notifier):
        result = await engine.invites.invite(guild.id, "nobody", "u1")

        assert result["membership"].status == MembershipStatus.PENDING
        assert notifier.invites == []
