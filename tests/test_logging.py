"""Tests for the logging module."""

import logging
import stat
import tempfile
from datetime import datetime
from pathlib import Path
from unittest.mock import patch

import pytest

from rubac.logging import (
    LoggerConfigError,
    LoggingConfig,
    configure_logging,
    get_default_log_dir,
    get_default_log_filename,
    get_log_file,
)
from rubac.logging.logger_setup import ConsoleFormatter, create_logging_config, validate_log_level


class TestLoggerSetup:
    """Test cases for logger setup functionality."""

    def test_validate_log_level_valid(self) -> None:
        """Test that valid log levels are accepted."""
        assert validate_log_level("DEBUG") == logging.DEBUG
        assert validate_log_level("info") == logging.INFO
        assert validate_log_level("WARNING") == logging.WARNING

    def test_validate_log_level_invalid(self) -> None:
        """Test that invalid log levels raise an exception."""
        with pytest.raises(LoggerConfigError):
            validate_log_level("INVALID_LEVEL")

    def test_get_default_log_dir_root(self) -> None:
        """Test log directory selection for root."""
        with patch("os.geteuid", return_value=0):
            assert get_default_log_dir() == Path("/var/log/rubac")

    def test_get_default_log_dir_user(self) -> None:
        """Test log directory selection for other users."""
        with patch("os.geteuid", return_value=1000):
            assert get_default_log_dir(Path("/scratch")) == Path("/scratch/rubac")

    def test_default_log_filename(self) -> None:
        """Test the dated default log file name."""
        assert get_default_log_filename("home", datetime(2024, 1, 2)) == "home.2024-01-02.log"

    def test_logging_config_dataclass(self) -> None:
        """Test LoggingConfig dataclass creation and defaults."""
        config = LoggingConfig(log_name="rubac")

        assert config.log_filename is None
        assert config.log_level == "INFO"
        assert config.log_dir is None
        assert config.enable_console is True
        assert config.enable_file is True

    def test_create_logging_config_private_file(self) -> None:
        """Test that the log file is created private to the owner."""
        with tempfile.TemporaryDirectory() as temp_dir:
            config = LoggingConfig(
                log_name="rubac_test",
                log_filename="rubac.log",
                log_dir=Path(temp_dir) / "logs",
            )

            logging_config = create_logging_config(config)

            log_file = Path(temp_dir) / "logs" / "rubac.log"
            assert logging_config["handlers"]["file_handler"]["filename"] == str(log_file)
            assert stat.S_IMODE(log_file.stat().st_mode) == 0o600
            assert logging_config["loggers"]["rubac_test"]["propagate"] is False

    def test_create_logging_config_console_only(self) -> None:
        """Test a configuration without file handler."""
        config = LoggingConfig(log_name="rubac_test", enable_file=False)

        logging_config = create_logging_config(config)

        assert list(logging_config["handlers"]) == ["console_handler"]

    def test_configure_logging_reports_log_file(self) -> None:
        """Test that the configured log file can be looked up."""
        with tempfile.TemporaryDirectory() as temp_dir:
            config = LoggingConfig(
                log_name="rubac_file_test",
                log_filename="run.log",
                log_dir=Path(temp_dir),
                enable_console=False,
            )

            logger = configure_logging(config)
            logger.info("hello")

            assert get_log_file(logger) == Path(temp_dir) / "run.log"
            for handler in logger.handlers:
                handler.close()
            assert "hello" in (Path(temp_dir) / "run.log").read_text()


class TestConsoleFormatter:
    """Test cases for ConsoleFormatter."""

    def _record(self, level: int) -> logging.LogRecord:
        return logging.LogRecord("rubac", level, __file__, 1, "message", None, None)

    def test_info_is_plain(self) -> None:
        """Test that informational messages carry no prefix."""
        formatter = ConsoleFormatter("%(message)s")

        assert formatter.format(self._record(logging.INFO)) == "message"

    def test_warning_and_error_are_prefixed(self) -> None:
        """Test that warnings and errors carry their level."""
        formatter = ConsoleFormatter("%(message)s")

        assert formatter.format(self._record(logging.WARNING)) == "Warning: message"
        assert formatter.format(self._record(logging.ERROR)) == "Error: message"
