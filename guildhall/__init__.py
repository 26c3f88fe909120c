"""
Guildhall - guild membership and role-based authorization engine.

Entry point is :class:`guildhall.core.services.GuildEngine`.
"""

__version__ = "0.1.0"
