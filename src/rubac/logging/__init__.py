"""Rubac Logging Module

Centralized logging configuration: a console handler for operator messages
and a private rotating log file per profile.
"""

from .logger_setup import (
    LoggerConfigError,
    LoggingConfig,
    configure_logging,
    get_default_log_dir,
    get_default_log_filename,
    get_log_file,
    get_logger,
)

__all__ = [
    "LoggerConfigError",
    "LoggingConfig",
    "configure_logging",
    "get_default_log_dir",
    "get_default_log_filename",
    "get_log_file",
    "get_logger",
]
