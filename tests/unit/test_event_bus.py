"""
Unit tests for the EventBus.
"""

import pytest

from guildhall.core.event.bus import EventBus, event_matches
from guildhall.core.event.types import ListenerPriority


@pytest.mark.unit
class TestEventMatches:
    @pytest.mark.parametrize(
        "name,pattern,expected",
        [
            ("guild.created", "guild.created", True),
            ("guild.created", "guild.deleted", False),
            ("guild.invite_created", "guild.*", True),
            ("guild.invite_created", "*.invite_created", True),
            ("guild.invite_created", "member.*", False),
            ("anything.at.all", "*", True),
        ],
    )
    def test_patterns(self, name, pattern, expected):
        assert event_matches(name, pattern) is expected


@pytest.mark.unit
class TestEventBus:
    async def test_publish_reaches_exact_and_wildcard_listeners(self):
        bus = EventBus()
        seen = []

        async def exact(data):
            seen.append(("exact", data["guild_id"]))

        def wildcard(data):
            seen.append(("wildcard", data["guild_id"]))

        bus.subscribe("guild.created", exact)
        bus.subscribe("guild.*", wildcard)

        await bus.publish("guild.created", {"guild_id": "g1"})

        assert sorted(seen) == [("exact", "g1"), ("wildcard", "g1")]

    async def test_priority_order(self):
        bus = EventBus()
        order = []

        bus.subscribe("e", lambda d: order.append("low"), priority=ListenerPriority.LOW, identifier="low")
        bus.subscribe("e", lambda d: order.append("critical"), priority=ListenerPriority.CRITICAL, identifier="crit")
        bus.subscribe("e", lambda d: order.append("normal"), identifier="normal")

        await bus.publish("e", {})

        assert order == ["critical", "normal", "low"]

    async def test_listener_failure_is_isolated(self):
        bus = EventBus()
        seen = []

        async def broken(data):
            raise RuntimeError("listener exploded")

        bus.subscribe("e", broken, priority=ListenerPriority.HIGH, identifier="broken")
        bus.subscribe("e", lambda d: seen.append(d["n"]), identifier="ok")

        results = await bus.publish("e", {"n": 1})

        assert seen == [1]
        assert bus.error_count == 1
        assert len(results) == 1

    async def test_once_listener_runs_once(self):
        bus = EventBus()
        calls = []

        bus.subscribe("e", lambda d: calls.append(1), once=True, identifier="once")

        await bus.publish("e", {})
        await bus.publish("e", {})

        assert calls == [1]

    def test_duplicate_identifier_is_ignored(self):
        bus = EventBus()

        bus.subscribe("e", lambda d: None, identifier="same")
        bus.subscribe("e", lambda d: None, identifier="same")

        assert bus.get_listener_count("e") == 1

    def test_unsubscribe(self):
        bus = EventBus()
        bus.subscribe("e", lambda d: None, identifier="x")

        assert bus.unsubscribe("e", "x") is True
        assert bus.unsubscribe("e", "x") is False
        assert bus.get_listener_count() == 0

    def test_rejects_wrong_callback_signature(self):
        bus = EventBus()

        with pytest.raises(ValueError):
            bus.subscribe("e", lambda a, b: None)
