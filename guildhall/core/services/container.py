"""
Guild Engine - Service Container
================================

Purpose
-------
Wires the guild domain services together and exposes them as one object.

Responsibilities
----------------
- Construct every guild service with (config_manager, event_bus, logger)
  plus the shared GuildPermissionService
- Register the notification listener on the event bus
- Optionally own the DatabaseService lifecycle

Non-Responsibilities
--------------------
- Business logic (lives in guildhall.modules.guild)
- Notification transport (supplied as a Notifier)

Usage
-----
    engine = GuildEngine(notifier=my_mailer, contact_directory=my_directory)
    await engine.initialize(database_url="postgresql+asyncpg://...")
    guild = await engine.guilds.create_guild("Cosmic Explorers", owner_id="u1")
    ...
    await engine.shutdown()
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, Dict, Optional, Type

from guildhall.core.config.config import Config
from guildhall.core.config.manager import ConfigManager
from guildhall.core.database.service import DatabaseService
from guildhall.core.event.bus import EventBus
from guildhall.core.logging.logger import get_logger
from guildhall.modules.guild import (
    GuildInviteService,
    GuildMemberService,
    GuildNotificationListener,
    GuildPermissionService,
    GuildService,
    LoggingNotifier,
    StaticContactDirectory,
)

if TYPE_CHECKING:
    from logging import Logger

    from guildhall.modules.guild.notifications import ContactDirectory, Notifier

logger = get_logger(__name__)


class GuildEngine:
    """
    Dependency container for the guild services.

    Access services through the ``permissions``, ``guilds``, ``invites`` and
    ``members`` properties after ``initialize()``.
    """

    def __init__(
        self,
        config_manager: Type[ConfigManager] = ConfigManager,
        event_bus: Optional[EventBus] = None,
        logger: Optional[Logger] = None,
        notifier: Optional[Notifier] = None,
        contact_directory: Optional[ContactDirectory] = None,
    ) -> None:
        self._config_manager = config_manager
        self._event_bus = event_bus or EventBus()
        self._logger = logger or get_logger(__name__)
        self._notifier: Notifier = notifier or LoggingNotifier()
        self._contact_directory: ContactDirectory = (
            contact_directory or StaticContactDirectory()
        )

        self._permissions: Optional[GuildPermissionService] = None
        self._guilds: Optional[GuildService] = None
        self._invites: Optional[GuildInviteService] = None
        self._members: Optional[GuildMemberService] = None
        self._notification_listener: Optional[GuildNotificationListener] = None

        self._initialized = False
        self._owns_database = False
        self._service_init_times: Dict[str, float] = {}

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def initialize(
        self,
        database_url: Optional[str] = None,
        create_schema: bool = False,
    ) -> None:
        """
        Build the services.

        Args:
            database_url: When DatabaseService is not yet initialized, it is
                initialized with this URL (or ``Config.DATABASE_URL``) and
                shut down again by ``shutdown()``
            create_schema: Create missing tables after connecting
        """
        if self._initialized:
            self._logger.warning("GuildEngine already initialized")
            return

        start = time.perf_counter()
        try:
            if not DatabaseService.is_initialized():
                await DatabaseService.initialize(database_url)
                self._owns_database = True
            if create_schema:
                await DatabaseService.create_schema()

            self._permissions = self._create_service("permissions", GuildPermissionService)
            self._guilds = self._create_service("guilds", GuildService, self._permissions)
            self._invites = self._create_service("invites", GuildInviteService, self._permissions)
            self._members = self._create_service("members", GuildMemberService, self._permissions)

            self._notification_listener = GuildNotificationListener(
                self._notifier,
                self._contact_directory,
                get_logger("guildhall.modules.guild.notifications"),
            )
            self._notification_listener.register(self._event_bus)

        except Exception as e:
            self._logger.critical(
                "GuildEngine initialization failed",
                exc_info=True,
                extra={"error": str(e)},
            )
            raise

        self._initialized = True
        self._logger.info(
            "GuildEngine initialized",
            extra={
                "total_time_seconds": round(time.perf_counter() - start, 3),
                "service_count": len(self._service_init_times),
                "config": Config.summary(),
            },
        )

    def _create_service(self, name: str, cls: type, *dependencies: Any) -> Any:
        start = time.perf_counter()
        try:
            instance = cls(
                self._config_manager,
                self._event_bus,
                get_logger(f"{cls.__module__}.{cls.__name__}"),
                *dependencies,
            )
        except Exception:
            self._logger.error(f"Failed to initialize {name}", exc_info=True)
            raise

        duration = time.perf_counter() - start
        self._service_init_times[name] = duration
        self._logger.debug(f"Initialized {name} in {duration:.3f}s")
        return instance

    async def shutdown(self) -> None:
        if not self._initialized:
            return

        self._logger.info("Shutting down GuildEngine...")
        self._event_bus.clear()
        if self._owns_database:
            await DatabaseService.shutdown()
            self._owns_database = False
        self._initialized = False
        self._logger.info("GuildEngine shut down")

    async def health_check(self) -> Dict[str, Any]:
        return {
            "initialized": self._initialized,
            "service_count": len(self._service_init_times),
            "database": await DatabaseService.health_check()
            if DatabaseService.is_initialized()
            else False,
        }

    # ========================================================================
    # Services
    # ========================================================================

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def permissions(self) -> GuildPermissionService:
        if not self._initialized or self._permissions is None:
            raise RuntimeError("GuildEngine not initialized. Call initialize() first.")
        return self._permissions

    @property
    def guilds(self) -> GuildService:
        if not self._initialized or self._guilds is None:
            raise RuntimeError("GuildEngine not initialized. Call initialize() first.")
        return self._guilds

    @property
    def invites(self) -> GuildInviteService:
        if not self._initialized or self._invites is None:
            raise RuntimeError("GuildEngine not initialized. Call initialize() first.")
        return self._invites

    @property
    def members(self) -> GuildMemberService:
        if not self._initialized or self._members is None:
            raise RuntimeError("GuildEngine not initialized. Call initialize() first.")
        return self._members
