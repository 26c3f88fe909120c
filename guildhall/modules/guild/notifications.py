"""
Invitation notifications.

Delivery is pluggable: a ``Notifier`` sends the message and a
``ContactDirectory`` maps user ids to addresses. ``GuildNotificationListener``
connects both to the invite events on the EventBus. Those events are
published after the invite transaction commits, so a delivery problem can
never undo an invitation; it is logged and dropped.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Protocol, runtime_checkable

from guildhall.core.event.bus import EventBus
from guildhall.core.event.types import EventPayload, ListenerPriority

logger = logging.getLogger(__name__)

INVITE_EVENTS = ("guild.invite_created", "guild.invite_resent")
REVOKE_EVENTS = ("guild.invite_revoked",)


@runtime_checkable
class Notifier(Protocol):
    async def send_invite(self, address: str, guild_name: str, token: str) -> None: ...

    async def send_revoke(self, address: str, guild_name: str) -> None: ...


@runtime_checkable
class ContactDirectory(Protocol):
    async def get_contact_address(self, user_id: str) -> Optional[str]: ...


class StaticContactDirectory:
    """In-memory user id -> address mapping."""

    def __init__(self, addresses: Optional[Mapping[str, str]] = None) -> None:
        self._addresses: Dict[str, str] = dict(addresses or {})

    def register(self, user_id: str, address: str) -> None:
        self._addresses[user_id] = address

    async def get_contact_address(self, user_id: str) -> Optional[str]:
        return self._addresses.get(user_id)


class LoggingNotifier:
    """Notifier that logs instead of delivering (no transport configured)."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self.log = log or logger

    async def send_invite(self, address: str, guild_name: str, token: str) -> None:
        # Tokens are credentials; never written to logs.
        self.log.info(
            "Invite notification (not delivered)",
            extra={"address": address, "guild_name": guild_name},
        )

    async def send_revoke(self, address: str, guild_name: str) -> None:
        self.log.info(
            "Revoke notification (not delivered)",
            extra={"address": address, "guild_name": guild_name},
        )


class GuildNotificationListener:
    """
    Sends invite/revoke notifications from committed invite events.

    Handlers never raise: a missing address is logged at info, any other
    failure at warning with the traceback.
    """

    def __init__(
        self,
        notifier: Notifier,
        directory: ContactDirectory,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self._notifier = notifier
        self._directory = directory
        self.log = log or logger

    def register(self, bus: EventBus) -> List[str]:
        """Subscribe to the invite events; returns the listener identifiers."""
        identifiers = []
        for event_name in INVITE_EVENTS:
            identifiers.append(
                bus.subscribe(
                    event_name,
                    self.on_invite,
                    priority=ListenerPriority.LOW,
                    identifier=f"guild_notifications:{event_name}",
                )
            )
        for event_name in REVOKE_EVENTS:
            identifiers.append(
                bus.subscribe(
                    event_name,
                    self.on_revoke,
                    priority=ListenerPriority.LOW,
                    identifier=f"guild_notifications:{event_name}",
                )
            )
        return identifiers

    async def _resolve_address(self, data: EventPayload) -> Optional[str]:
        user_id = data["user_id"]
        address = await self._directory.get_contact_address(user_id)
        if not address:
            self.log.info(
                "No contact address for invitee; notification skipped",
                extra={"user_id": user_id, "guild_id": data.get("guild_id")},
            )
        return address

    async def on_invite(self, data: EventPayload) -> None:
        try:
            address = await self._resolve_address(data)
            if address:
                await self._notifier.send_invite(address, data["guild_name"], data["token"])
        except Exception:
            self.log.warning(
                "Failed to send invite notification",
                extra={"user_id": data.get("user_id"), "guild_id": data.get("guild_id")},
                exc_info=True,
            )

    async def on_revoke(self, data: EventPayload) -> None:
        try:
            address = await self._resolve_address(data)
            if address:
                await self._notifier.send_revoke(address, data["guild_name"])
        except Exception:
            self.log.warning(
                "Failed to send revoke notification",
                extra={"user_id": data.get("user_id"), "guild_id": data.get("guild_id")},
                exc_info=True,
            )
