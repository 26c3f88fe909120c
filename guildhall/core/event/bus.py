"""
Guildhall EventBus

Async publish/subscribe between the guild services and their side effects
(invite notifications, the bounty collaborator, audit consumers).

- Services publish only after their transaction has committed.
- Listeners subscribe to an exact name (``guild.created``) or a shell-style
  pattern (``guild.*``, ``*.invite_created``, ``*``).
- Listeners run one after another in priority order. A listener that raises
  is logged with its traceback and skipped; the publisher never sees it.

Each GuildEngine owns its own bus, so tests can build isolated ones.
"""

from __future__ import annotations

import inspect
from fnmatch import fnmatchcase
from typing import Any, Dict, List, Optional

from guildhall.core.event.types import (
    CallbackType,
    EventListener,
    EventPayload,
    ListenerPriority,
    default_identifier,
)
from guildhall.core.logging.logger import get_logger

logger = get_logger(__name__)


def event_matches(event_name: str, pattern: str) -> bool:
    """
    >>> event_matches("guild.invite_created", "guild.*")
    True
    >>> event_matches("guild.invite_created", "member.*")
    False
    """
    if "*" not in pattern:
        return event_name == pattern
    return fnmatchcase(event_name, pattern)


def _check_signature(callback: CallbackType) -> None:
    try:
        params = inspect.signature(callback).parameters
    except (TypeError, ValueError):
        # Some builtins expose no signature.
        return
    if len(params) != 1:
        name = getattr(callback, "__qualname__", repr(callback))
        raise ValueError(
            f"Event listener '{name}' must take exactly one argument (the payload), "
            f"takes {len(params)}"
        )


class EventBus:
    """
    Examples
    --------
    >>> bus = EventBus()
    >>> bus.subscribe("guild.invite_created", on_invite)
    >>> await bus.publish("guild.invite_created", {"guild_id": "g1", "user_id": "u2"})
    """

    def __init__(self) -> None:
        self._subscriptions: Dict[str, List[EventListener]] = {}
        self._error_count = 0

    # ------------------------------------------------------------------ #
    # Subscriptions
    # ------------------------------------------------------------------ #

    def subscribe(
        self,
        event_name: str,
        callback: CallbackType,
        *,
        priority: ListenerPriority = ListenerPriority.NORMAL,
        identifier: Optional[str] = None,
        once: bool = False,
    ) -> str:
        """
        Register ``callback`` for an event name or pattern.

        Subscribing twice with the same identifier keeps the first listener.

        Returns
        -------
        str
            The listener identifier, for ``unsubscribe``.

        Raises
        ------
        ValueError
            The callback does not take exactly one argument.
        """
        _check_signature(callback)
        listener = EventListener(
            callback=callback,
            identifier=identifier or default_identifier(event_name, callback),
            priority=priority,
            once=once,
        )

        listeners = self._subscriptions.setdefault(event_name, [])
        if any(existing.identifier == listener.identifier for existing in listeners):
            logger.debug(
                "EventBus: listener already subscribed",
                extra={"event_name": event_name, "listener_id": listener.identifier},
            )
            return listener.identifier

        listeners.append(listener)
        listeners.sort(key=lambda item: item.priority)
        logger.debug(
            "EventBus: subscribed",
            extra={
                "event_name": event_name,
                "listener_id": listener.identifier,
                "priority": listener.priority.name,
            },
        )
        return listener.identifier

    def unsubscribe(self, event_name: str, identifier: str) -> bool:
        listeners = self._subscriptions.get(event_name)
        if not listeners:
            return False

        kept = [item for item in listeners if item.identifier != identifier]
        if kept:
            self._subscriptions[event_name] = kept
        else:
            del self._subscriptions[event_name]
        return len(kept) != len(listeners)

    def clear(self) -> None:
        self._subscriptions.clear()

    # ------------------------------------------------------------------ #
    # Publishing
    # ------------------------------------------------------------------ #

    def _take_listeners(self, event_name: str) -> List[EventListener]:
        """Matching listeners in run order; ``once`` listeners are removed here."""
        matched: List[EventListener] = []
        for pattern in list(self._subscriptions):
            if not event_matches(event_name, pattern):
                continue
            listeners = self._subscriptions[pattern]
            matched.extend(listeners)
            for listener in listeners:
                if listener.once:
                    self.unsubscribe(pattern, listener.identifier)

        matched.sort(key=lambda item: item.priority)
        return matched

    async def publish(self, event_name: str, data: EventPayload) -> List[Any]:
        """
        Deliver ``data`` to every matching listener.

        Returns
        -------
        list
            Return values of the listeners that succeeded, in run order.
        """
        listeners = self._take_listeners(event_name)
        logger.debug(
            "EventBus: publishing",
            extra={"event_name": event_name, "listener_count": len(listeners)},
        )

        results: List[Any] = []
        for listener in listeners:
            try:
                result = listener.callback(data)
                if inspect.isawaitable(result):
                    result = await result
            except Exception as exc:
                self._error_count += 1
                logger.error(
                    "EventBus: listener failed",
                    extra={
                        "event_name": event_name,
                        "listener_id": listener.identifier,
                        "error_type": type(exc).__name__,
                    },
                    exc_info=True,
                )
                continue
            results.append(result)

        return results

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    @property
    def error_count(self) -> int:
        return self._error_count

    def get_listener_count(self, event_name: Optional[str] = None) -> int:
        """All listeners, or only those that would receive ``event_name``."""
        return sum(
            len(listeners)
            for pattern, listeners in self._subscriptions.items()
            if event_name is None or event_matches(event_name, pattern)
        )
