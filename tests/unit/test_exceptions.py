"""
Unit tests for the domain exception hierarchy.
"""

from datetime import datetime, timezone

import pytest

from guildhall.modules.shared.exceptions import (
    ConflictError,
    ErrorSeverity,
    ForbiddenError,
    GuildhallDomainException,
    InvalidInputError,
    InviteExpiredError,
    NotFoundError,
)


@pytest.mark.unit
class TestDomainExceptions:
    def test_all_inherit_from_base(self):
        for exc in (
            NotFoundError("Guild", "g1"),
            ConflictError("Slug already in use"),
            ForbiddenError("guild.delete", "Only the owner"),
            InvalidInputError("name", "Too long"),
            InviteExpiredError("g1", "u2", None),
        ):
            assert isinstance(exc, GuildhallDomainException)
            assert exc.is_retryable is False

    def test_not_found_message_and_code(self):
        exc = NotFoundError("Guild", "g1", details={"slug": "x"})

        assert exc.message == "Guild not found: g1"
        assert exc.error_code == "GUILD_NOT_FOUND"
        assert exc.details == {"resource_type": "Guild", "identifier": "g1", "slug": "x"}

    def test_forbidden_carries_action(self):
        exc = ForbiddenError("guild.update", "Requires ADMIN or higher", {"guild_id": "g1"})

        assert exc.action == "guild.update"
        assert exc.details["action"] == "guild.update"
        assert exc.details["guild_id"] == "g1"
        assert exc.severity is ErrorSeverity.WARNING

    def test_invite_expired_serializes_timestamp(self):
        expires_at = datetime(2030, 1, 1, tzinfo=timezone.utc)

        exc = InviteExpiredError("g1", "u2", expires_at)

        assert exc.details["expires_at"] == expires_at.isoformat()
        assert exc.error_code == "INVITE_EXPIRED"

    def test_to_dict(self):
        payload = ConflictError("Slug already in use", {"slug": "cosmic"}).to_dict()

        assert payload == {
            "error_type": "ConflictError",
            "error_code": "CONFLICT",
            "message": "Slug already in use",
            "details": {"slug": "cosmic"},
            "severity": "info",
            "is_retryable": False,
        }

