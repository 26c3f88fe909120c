"""
Base Service
============

Common plumbing for the guild services: tunables from ConfigManager,
operation logging and post-commit event publication.

A service owns its transactions (through ``DatabaseService``) and its rules;
this class owns neither.

Usage
-----
    class GuildMemberService(BaseService):
        def __init__(self, config_manager, event_bus, logger, permissions):
            super().__init__(config_manager, event_bus, logger)
            self._permissions = permissions
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional, Type

from guildhall.core.config.errors import ConfigurationError

if TYPE_CHECKING:
    from logging import Logger

    from guildhall.core.config.manager import ConfigManager
    from guildhall.core.event.bus import EventBus


class BaseService:
    """
    Args:
        config_manager: ConfigManager class (or anything exposing ``get(key, default)``)
        event_bus: Bus that domain events are published on
        logger: Logger named after the concrete service
    """

    def __init__(
        self,
        config_manager: Type[ConfigManager],
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        self._config = config_manager
        self._events = event_bus
        self.log = logger

    def get_config(self, key: str, default: Optional[Any] = None) -> Any:
        return self._config.get(key, default)

    def get_config_int(self, key: str, default: int, min_value: int = 0) -> int:
        """
        Integer tunable such as a page size or TTL.

        Raises:
            ConfigurationError: Value is not an int (bools included) or below ``min_value``
        """
        value = self.get_config(key, default)
        if isinstance(value, bool) or not isinstance(value, int) or value < min_value:
            raise ConfigurationError(
                f"Configuration key '{key}' must be an integer >= {min_value}",
                details={"key": key, "value": repr(value)},
            )
        return value

    async def emit_event(
        self,
        event_type: str,
        data: Dict[str, Any],
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Publish ``event_type`` with ``data``; the payload also carries its own name.

        Only call once the producing transaction has committed. Listener
        failures never reach the caller.
        """
        await self._events.publish(
            event_type, {"event_type": event_type, **data, **(context or {})}
        )

    def log_operation(self, operation: str, **context: Any) -> None:
        """Info record for a completed guild operation (ids go in ``context``)."""
        self.log.info(
            f"Guild operation: {operation}",
            extra={"operation": operation, **context},
        )
