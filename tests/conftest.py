"""
Pytest Configuration and Fixtures for Guildhall Tests
=====================================================

Purpose
-------
Centralized fixtures for the Guildhall test suite.

Responsibilities
----------------
- Per-test SQLite database (aiosqlite) behind DatabaseService
- Service wiring through GuildEngine, with a recording notifier
- Config cache isolation between tests
- Mock fixtures for unit tests

Architecture Notes
------------------
- Unit tests use mocks or pure functions (fast, isolated)
- Integration tests run the real services against a temporary SQLite file,
  so unique constraints and transactions behave for real
- The PostgreSQL suite (tests/integration/test_postgres_concurrency.py)
  starts its own testcontainer and only runs with GUILDHALL_PG_TESTS=1
"""

from __future__ import annotations

import os

# Must be set before guildhall.core.config.config loads the environment.
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from datetime import timedelta
from typing import AsyncGenerator, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from sqlalchemy import func, select, update

from guildhall.core.config.manager import ConfigManager
from guildhall.core.database.base import utc_now
from guildhall.core.database.retry_policy import DatabaseRetryConfig, DatabaseRetryPolicy
from guildhall.core.database.service import DatabaseService
from guildhall.core.event.bus import EventBus
from guildhall.core.logging.logger import clear_log_context, get_logger
from guildhall.core.services.container import GuildEngine
from guildhall.database.models import Guild, GuildMembership, MembershipStatus
from guildhall.modules.guild.notifications import StaticContactDirectory

logger = get_logger(__name__)


# ============================================================================
# TEST DOUBLES
# ============================================================================


class RecordingNotifier:
    """Notifier that remembers every call instead of delivering."""

    def __init__(self) -> None:
        self.invites: List[Tuple[str, str, str]] = []
        self.revokes: List[Tuple[str, str]] = []
        self.fail_with: Optional[Exception] = None

    async def send_invite(self, address: str, guild_name: str, token: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.invites.append((address, guild_name, token))

    async def send_revoke(self, address: str, guild_name: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.revokes.append((address, guild_name))


class EventRecorder:
    """Collects every event published on a bus."""

    def __init__(self, bus: EventBus) -> None:
        self.events: List[Tuple[str, Dict]] = []
        bus.subscribe("*", self._record, identifier="test_event_recorder")

    async def _record(self, data: Dict) -> None:
        self.events.append((data.get("event_type", ""), dict(data)))

    def names(self) -> List[str]:
        return [name for name, _ in self.events]


# ============================================================================
# CONFIG / LOGGING ISOLATION
# ============================================================================


@pytest.fixture(autouse=True)
def _isolate_config():
    """Every test starts from freshly loaded configuration."""
    ConfigManager.clear_cache()
    yield
    ConfigManager.clear_cache()
    clear_log_context()


# ============================================================================
# DATABASE FIXTURES (Integration Tests)
# ============================================================================


@pytest.fixture
def database_url(tmp_path) -> str:
    """SQLite file per test: real constraints, no shared state."""
    return f"sqlite+aiosqlite:///{tmp_path / 'guildhall_test.db'}"


@pytest_asyncio.fixture
async def database(database_url: str) -> AsyncGenerator[None, None]:
    """
    Initialize DatabaseService with a fresh schema.

    SQLite lets one writer in at a time and answers the others with
    "database is locked", so concurrent tests get a few more quick retries.

    Scope: function (clean database per test)
    """
    retry_policy = DatabaseRetryPolicy(
        DatabaseRetryConfig(
            max_attempts=8, initial_backoff_ms=10, max_backoff_ms=200, jitter_ms=20
        )
    )
    await DatabaseService.initialize(database_url, testing=True, retry_policy=retry_policy)
    await DatabaseService.create_schema()
    try:
        yield
    finally:
        await DatabaseService.shutdown()


@pytest.fixture
def contact_directory() -> StaticContactDirectory:
    return StaticContactDirectory(
        {
            "u1": "u1@example.test",
            "u2": "u2@example.test",
            "u3": "u3@example.test",
            "u4": "u4@example.test",
        }
    )


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def engine(
    database, notifier: RecordingNotifier, contact_directory: StaticContactDirectory
) -> AsyncGenerator[GuildEngine, None]:
    """GuildEngine wired to the test database and the recording notifier."""
    guild_engine = GuildEngine(
        config_manager=ConfigManager,
        event_bus=EventBus(),
        notifier=notifier,
        contact_directory=contact_directory,
    )
    await guild_engine.initialize()
    try:
        yield guild_engine
    finally:
        await guild_engine.shutdown()


@pytest.fixture
def events(engine: GuildEngine) -> EventRecorder:
    return EventRecorder(engine.event_bus)


# ============================================================================
# MOCK FIXTURES (Unit Tests)
# ============================================================================


@pytest.fixture
def mock_event_bus(mocker):
    """
    Mock EventBus for unit tests.

    Scope: function
    """
    mock_bus = mocker.MagicMock()
    mock_bus.publish = mocker.AsyncMock(return_value=[])
    mock_bus.subscribe = mocker.MagicMock()
    return mock_bus


@pytest.fixture
def mock_config_manager(mocker):
    """
    Mock ConfigManager for unit tests; ``get`` returns the supplied default.

    Scope: function
    """
    mock_config = mocker.MagicMock()
    mock_config.get = mocker.MagicMock(side_effect=lambda key, default=None: default)
    return mock_config


# ============================================================================
# DATABASE HELPERS
# ============================================================================


async def _member_counts(guild_id: str) -> Tuple[int, int]:
    """(stored member_count, number of APPROVED memberships)."""
    async with DatabaseService.get_session() as session:
        stored = (
            await session.execute(select(Guild.member_count).where(Guild.id == guild_id))
        ).scalar_one()
        approved = (
            await session.execute(
                select(func.count())
                .select_from(GuildMembership)
                .where(
                    GuildMembership.guild_id == guild_id,
                    GuildMembership.status == MembershipStatus.APPROVED,
                )
            )
        ).scalar_one()
    return stored, approved


async def _expire_invite(guild_id: str, user_id: str) -> None:
    """Move a pending invite's expiry into the past."""
    async with DatabaseService.get_transaction() as session:
        await session.execute(
            update(GuildMembership)
            .where(
                GuildMembership.guild_id == guild_id,
                GuildMembership.user_id == user_id,
            )
            .values(invitation_expires_at=utc_now() - timedelta(minutes=1))
        )


@pytest.fixture
def member_counts():
    return _member_counts


@pytest.fixture
def expire_invite():
    return _expire_invite
