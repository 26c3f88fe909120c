"""
Guildhall configuration.

``Config`` holds process settings read once from the environment (database,
retries, logging). ``ConfigManager`` holds the guild tunables (invite
lifetime, search paging, length limits) from YAML under ``config/``, with
in-process overrides.

    from guildhall.core.config import Config, ConfigManager

    url = Config.DATABASE_URL
    ttl_days = ConfigManager.get("guilds.invite_ttl_days", 7)
"""

from guildhall.core.config.config import Config, Environment
from guildhall.core.config.errors import ConfigError, ConfigurationError
from guildhall.core.config.manager import ConfigManager

__all__ = [
    "Config",
    "Environment",
    "ConfigManager",
    "ConfigError",
    "ConfigurationError",
]
