"""Tests for rsync command lines and the version check."""

import logging
import tempfile
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from rubac.config import ClientSettings
from rubac.exceptions import PreconditionError
from rubac.rsync import (
    BACKUP_OPTIONS,
    build_backup_command,
    build_restore_command,
    check_rsync_version,
    parse_rsync_version,
    write_exclude_file,
)


def make_settings(address: str = "localhost", compress: bool = False) -> ClientSettings:
    """Create effective settings of client esme."""
    return ClientSettings(
        client="esme",
        address=address,
        includes=["/home", "/etc"],
        excludes=["*.o"],
        opts=["--numeric-ids"],
        ninc=2,
        compress=compress,
    )


class TestBuildBackupCommand:
    """Test cases for build_backup_command."""

    def test_local_full_run(self) -> None:
        """Test the command of a local full run with link and excludes."""
        cmd = build_backup_command(
            make_settings(),
            Path("/mnt/b/rubac/esme/rubac.2024-01-02"),
            link_dest=Path("/mnt/b/rubac/esme/rubac.2024-01-01"),
            exclude_file=Path("/tmp/x.excl"),
        )

        assert cmd == [
            "rsync",
            "-r",
            "-a",
            "-v",
            "-v",
            "--relative",
            "--delete-excluded",
            "--ignore-errors",
            "--one-file-system",
            "--numeric-ids",
            "--delete",
            "--link-dest=/mnt/b/rubac/esme/rubac.2024-01-01",
            "--exclude-from=/tmp/x.excl",
            "/home",
            "/etc",
            "/mnt/b/rubac/esme/rubac.2024-01-02",
        ]

    def test_remote_update_sources(self) -> None:
        """Test that remote sources carry the client address."""
        cmd = build_backup_command(
            make_settings(address="esme.example.org", compress=True),
            Path("/mnt/target"),
            delete=False,
            dry_run=True,
        )

        assert "--delete" not in cmd
        assert "--compress" in cmd
        assert "--dry-run" in cmd
        assert cmd[-3:] == ["esme.example.org:/home", "esme.example.org:/etc", "/mnt/target"]

    def test_replaced_base_options(self) -> None:
        """Test that the base options are taken as given."""
        cmd = build_backup_command(
            make_settings(),
            Path("/mnt/target"),
            base_options="-e ssh -a",
            rsync="/usr/local/bin/rsync",
        )

        assert cmd[:5] == ["/usr/local/bin/rsync", "-r", "-e", "ssh", "-a"]
        assert "--relative" not in cmd
        assert BACKUP_OPTIONS.startswith("-a -v -v")


class TestBuildRestoreCommand:
    """Test cases for build_restore_command."""

    def test_restore_command(self) -> None:
        """Test the restore command line."""
        cmd = build_restore_command(
            Path("/tmp/list.dat"),
            Path("/mnt/b/rubac/esme/rubac.2024-01-01"),
            "esme:/tmp/rubac/esme",
        )

        assert cmd == [
            "rsync",
            "-a",
            "-r",
            "-v",
            "-v",
            "--relative",
            "--one-file-system",
            "--files-from=/tmp/list.dat",
            "/mnt/b/rubac/esme/rubac.2024-01-01/",
            "esme:/tmp/rubac/esme",
        ]


class TestExcludeFile:
    """Test cases for write_exclude_file."""

    def test_one_pattern_per_line(self) -> None:
        """Test the exclude file format."""
        with tempfile.TemporaryDirectory() as temp_dir:
            path = write_exclude_file(["*.o", "*/tmp/"], Path(temp_dir) / "x.excl")

            assert path.read_text() == "*.o\n*/tmp/\n"


class TestRsyncVersion:
    """Test cases for the rsync version check."""

    def test_parse_version(self) -> None:
        """Test parsing the version banner."""
        banner = "rsync  version 3.2.7  protocol version 31\nCopyright (C) 1996-2022"

        assert parse_rsync_version(banner) == (3, 2, 7)
        assert parse_rsync_version("no version here") is None

    @patch("rubac.rsync.command.subprocess.run")
    def test_check_accepts_recent_version(self, mock_run: Mock) -> None:
        """Test that a recent rsync passes."""
        mock_run.return_value = Mock(stdout="rsync  version 3.2.7  protocol version 31\n")

        assert check_rsync_version("rsync", Mock(spec=logging.Logger)) == (3, 2, 7)
        mock_run.assert_called_once_with(
            ["rsync", "--version"],
            check=False,
            capture_output=True,
            text=True,
        )

    @patch("rubac.rsync.command.subprocess.run")
    def test_check_rejects_old_version(self, mock_run: Mock) -> None:
        """Test that an rsync without --link-dest is rejected."""
        mock_run.return_value = Mock(stdout="rsync version 2.5.5 protocol version 26\n")

        with pytest.raises(PreconditionError, match="too old"):
            check_rsync_version("rsync", Mock(spec=logging.Logger))

    @patch("rubac.rsync.command.subprocess.run")
    def test_check_missing_executable(self, mock_run: Mock) -> None:
        """Test that a missing rsync is reported."""
        mock_run.side_effect = FileNotFoundError("rsync")

        with pytest.raises(PreconditionError, match="Cannot run"):
            check_rsync_version("rsync", Mock(spec=logging.Logger))
