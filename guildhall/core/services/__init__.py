from guildhall.core.services.container import GuildEngine

__all__ = ["GuildEngine"]
