"""Logging configuration and setup utilities for rubac.

Console output carries the operator-facing messages, the private log file
under the log directory keeps a detailed, timestamped record of every run.
"""

import logging
import logging.config
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

LOG_FILE_MODE = 0o600


class LoggerConfigError(Exception):
    """Custom exception for logger configuration errors."""


@dataclass
class LoggingConfig:
    """Configuration for logging setup."""

    log_name: str
    log_filename: str | None = None
    log_level: str = "INFO"
    log_dir: Path | None = None
    max_bytes: int = 5 * 1024 * 1024  # 5 MB
    backup_count: int = 3
    enable_console: bool = True
    enable_file: bool = True


class ConsoleFormatter(logging.Formatter):
    """Plain messages for INFO and below, level-prefixed messages above."""

    def format(self, record: logging.LogRecord) -> str:
        """Format the record, prefixing warnings and errors with their level."""
        message = super().format(record)
        if record.levelno > logging.INFO:
            return f"{record.levelname.capitalize()}: {message}"
        return message


def validate_log_level(log_level: str) -> int:
    """Validate and return the numeric log level."""
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        error_msg = f"Invalid log level: {log_level}"
        raise LoggerConfigError(error_msg)
    return numeric_level


def get_default_log_dir(tmp_dir: Path | None = None) -> Path:
    """Get the default log directory: /var/log/rubac for root, TMP/rubac otherwise."""
    if os.geteuid() == 0:
        return Path("/var/log/rubac")
    base = tmp_dir if tmp_dir is not None else Path(tempfile.gettempdir())
    return base / "rubac"


def get_default_log_filename(profile: str, now: datetime | None = None) -> str:
    """Return the default log file name, <profile>.<YYYY-MM-DD>.log."""
    stamp = (now or datetime.now()).strftime("%Y-%m-%d")
    return f"{profile}.{stamp}.log"


def _prepare_log_file(log_file: Path) -> None:
    """Create the log file with private permissions before the handler opens it."""
    if not log_file.exists():
        log_file.touch(mode=LOG_FILE_MODE)


def create_logging_config(config: LoggingConfig) -> dict[str, Any]:
    """Create logging configuration dictionary."""
    numeric_level = validate_log_level(config.log_level)

    log_dir = get_default_log_dir() if config.log_dir is None else config.log_dir

    if not config.log_filename:
        log_filename = f"{config.log_name}.log"
    else:
        log_filename = config.log_filename

    handlers: dict[str, dict[str, Any]] = {}

    if config.enable_file:
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            if not log_dir.is_dir():
                error_msg = f"Log directory {log_dir} is not a directory"
                raise LoggerConfigError(error_msg)
            log_file = log_dir / log_filename
            _prepare_log_file(log_file)
        except (PermissionError, OSError) as e:
            error_msg = f"Failed to create log file in {log_dir}: {e}"
            raise LoggerConfigError(error_msg) from e

        handlers["file_handler"] = {
            "level": numeric_level,
            "class": "logging.handlers.RotatingFileHandler",
            "filename": str(log_file),
            "maxBytes": config.max_bytes,
            "backupCount": config.backup_count,
            "formatter": "detailed",
            "encoding": "utf8",
        }

    if config.enable_console:
        handlers["console_handler"] = {
            "level": numeric_level,
            "class": "logging.StreamHandler",
            "formatter": "console",
        }

    formatters = {
        "console": {
            "()": ConsoleFormatter,
            "format": "%(message)s",
        },
        "detailed": {
            "format": "%(asctime)s %(levelname)s %(name)s:%(lineno)d: %(message)s",
            "datefmt": "%b %d %H:%M:%S",
        },
    }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "handlers": handlers,
        "loggers": {
            config.log_name: {
                "handlers": list(handlers.keys()),
                "level": numeric_level,
                "propagate": False,
            },
        },
    }


def get_log_file(logger: logging.Logger) -> Path | None:
    """Return the path of the file the logger writes to, if any."""
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler):
            return Path(handler.baseFilename)
    return None


def configure_logging(config: LoggingConfig) -> logging.Logger:
    """Configure logging for the application.

    Args:
        config: Logging configuration object

    Returns:
        Configured logger instance

    """
    try:
        logging_config = create_logging_config(config)
        logging.config.dictConfig(logging_config)
        logger = logging.getLogger(config.log_name)
        logger.debug(
            f"Logging configured for '{config.log_name}' at level {config.log_level}",
        )

    except (LoggerConfigError, ValueError, KeyError):
        # Fallback to basic console logging if configuration fails
        logging.basicConfig(
            level=validate_log_level(config.log_level),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        logger = logging.getLogger(config.log_name)
        logger.exception("Failed to configure logging. Using fallback configuration.")

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance. If not configured, uses basic configuration.

    Args:
        name: Name of the logger

    Returns:
        Logger instance

    """
    logger = logging.getLogger(name)

    parent_logger = logger.parent
    if not logger.handlers and (parent_logger is None or not parent_logger.handlers):
        logging.basicConfig(
            level=logging.INFO,
            format="%(message)s",
        )

    return logger
