"""rsync invocation: command lines, version check and process supervision."""

from .command import (
    BACKUP_FIXED_OPTIONS,
    BACKUP_OPTIONS,
    DEFAULT_RSYNC,
    MIN_RSYNC_VERSION,
    RESTORE_OPTIONS,
    backup_sources,
    build_backup_command,
    build_restore_command,
    check_rsync_version,
    parse_rsync_version,
    write_exclude_file,
)
from .process import TAIL_SIZE, RsyncProcess, RsyncStats

__all__ = [
    "BACKUP_FIXED_OPTIONS",
    "BACKUP_OPTIONS",
    "DEFAULT_RSYNC",
    "MIN_RSYNC_VERSION",
    "RESTORE_OPTIONS",
    "TAIL_SIZE",
    "RsyncProcess",
    "RsyncStats",
    "backup_sources",
    "build_backup_command",
    "build_restore_command",
    "check_rsync_version",
    "parse_rsync_version",
    "write_exclude_file",
]
