"""
Event types shared by the EventBus and its subscribers.

Guild events are plain dicts (``EventPayload``) that always include
``event_type`` plus the guild and user ids involved.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Awaitable, Callable, Union

EventPayload = dict[str, Any]

CallbackType = Union[
    Callable[[EventPayload], Any],
    Callable[[EventPayload], Awaitable[Any]],
]


class ListenerPriority(IntEnum):
    """Lower runs first: CRITICAL listeners see an event before LOW ones."""

    CRITICAL = 0
    HIGH = 10
    NORMAL = 50
    LOW = 100


def default_identifier(event_name: str, callback: CallbackType) -> str:
    """``module.qualname@event`` for callbacks subscribed without an identifier."""
    module = getattr(callback, "__module__", "unknown")
    name = getattr(callback, "__qualname__", None) or getattr(callback, "__name__", "callback")
    return f"{module}.{name}@{event_name}"


@dataclass(slots=True, frozen=True)
class EventListener:
    """
    One subscription held by the bus.

    ``identifier`` deduplicates subscriptions and is the handle for
    ``unsubscribe``. A ``once`` listener is dropped before it first runs.
    """

    callback: CallbackType
    identifier: str
    priority: ListenerPriority = ListenerPriority.NORMAL
    once: bool = False
