"""
Guildhall Logging Infrastructure

Exports the structured logging subsystem, log context helpers,
and setup/teardown for the global logging stack.
"""

from guildhall.core.logging.logger import (
    LogContext,
    LogSettings,
    current_settings,
    clear_log_context,
    get_log_context,
    get_logger,
    set_log_context,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "setup_logging",
    "shutdown_logging",
    "get_logger",
    "LogContext",
    "get_log_context",
    "set_log_context",
    "clear_log_context",
    "LogSettings",
    "current_settings",
]
