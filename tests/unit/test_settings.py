"""
Unit tests for the guild settings document.
"""

import pytest

from guildhall.modules.guild.settings import (
    SETTINGS_VERSION,
    GuildSettings,
    merge,
    validate_and_normalize,
)
from guildhall.modules.shared.exceptions import InvalidInputError


@pytest.mark.unit
class TestValidateAndNormalize:
    def test_none_means_no_change(self):
        assert validate_and_normalize(None) == {}

    def test_accepts_known_keys(self):
        result = validate_and_normalize(
            {"discoverable": True, "requireApproval": False, "visibility": "private"}
        )

        assert result == {
            "discoverable": True,
            "requireApproval": False,
            "visibility": "private",
        }

    def test_rejects_unknown_key(self):
        with pytest.raises(InvalidInputError) as exc_info:
            validate_and_normalize({"discoverable": True, "theme": "dark"})

        assert exc_info.value.field == "settings"
        assert "theme" in exc_info.value.validation_message

    def test_rejects_version_from_callers(self):
        with pytest.raises(InvalidInputError):
            validate_and_normalize({"version": 2})

    @pytest.mark.parametrize("value", ["yes", 1, None])
    def test_rejects_non_boolean_flags(self, value):
        with pytest.raises(InvalidInputError) as exc_info:
            validate_and_normalize({"discoverable": value})

        assert exc_info.value.field == "settings.discoverable"

    def test_rejects_unknown_visibility(self):
        with pytest.raises(InvalidInputError) as exc_info:
            validate_and_normalize({"visibility": "secret"})

        assert exc_info.value.field == "settings.visibility"

    @pytest.mark.parametrize("value", ["Private", "PUBLIC", " private "])
    def test_visibility_is_case_insensitive(self, value):
        assert validate_and_normalize({"visibility": value}) == {
            "visibility": value.strip().lower()
        }

    def test_rejects_non_mapping(self):
        with pytest.raises(InvalidInputError):
            validate_and_normalize(["discoverable"])


@pytest.mark.unit
class TestMerge:
    def test_defaults_for_new_guild(self):
        document = merge(None, {})

        assert document == {
            "version": SETTINGS_VERSION,
            "discoverable": False,
            "requireApproval": False,
            "visibility": "public",
        }

    def test_partial_update_leaves_other_keys(self):
        existing = merge(None, {"requireApproval": True, "visibility": "private"})

        document = merge(existing, {"discoverable": True})

        assert document["discoverable"] is True
        assert document["requireApproval"] is True
        assert document["visibility"] == "private"

    def test_legacy_document_is_upgraded(self):
        """Unknown stored keys are dropped and the version stamped."""
        document = merge({"discoverable": True, "legacyFlag": 1}, {})

        assert "legacyFlag" not in document
        assert document["discoverable"] is True
        assert document["version"] == SETTINGS_VERSION

    def test_invalid_stored_value_falls_back_to_default(self):
        settings = GuildSettings.from_mapping({"discoverable": "true"})

        assert settings.discoverable is False


@pytest.mark.unit
class TestGuildSettings:
    def test_round_trips_through_document(self):
        settings = GuildSettings(discoverable=True, require_approval=True, visibility="private")

        assert GuildSettings.from_mapping(settings.to_document()) == settings

    def test_is_immutable(self):
        settings = GuildSettings()

        with pytest.raises(AttributeError):
            settings.discoverable = True  # type: ignore[misc]
