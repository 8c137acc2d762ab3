"""
Structured logging module.

Provides JSON logging with run/group context propagation.

Components:
    - setup_logging(): console + rotating JSON file handlers
    - JSONFormatter / ConsoleFormatter
    - contextvars log context (run_id, stage, group)
    - log_with_context / log_exception / LoggedClass helpers
"""

from core.logging.context import clear_log_context, get_log_context, set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter
from core.logging.setup import generate_run_id, get_logger, setup_logging
from core.logging.utilities import LoggedClass, log_exception, log_with_context

__all__ = [
    "ConsoleFormatter",
    "JSONFormatter",
    "LoggedClass",
    "clear_log_context",
    "generate_run_id",
    "get_log_context",
    "get_logger",
    "log_exception",
    "log_with_context",
    "set_log_context",
    "setup_logging",
]
