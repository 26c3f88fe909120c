"""
Event system for Guildhall.

Services publish domain events (``guild.created``, ``guild.invite_created``,
...) after their transaction commits; listeners such as the notification
listener subscribe by exact name or wildcard pattern.
"""

from guildhall.core.event.bus import EventBus, event_matches
from guildhall.core.event.types import (
    CallbackType,
    EventListener,
    EventPayload,
    ListenerPriority,
    default_identifier,
)

__all__ = [
    "EventBus",
    "event_matches",
    "EventPayload",
    "EventListener",
    "ListenerPriority",
    "CallbackType",
    "default_identifier",
]
