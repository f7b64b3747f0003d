"""rsync command lines for backups and restores, and the version check."""

import logging
import re
import subprocess
from collections.abc import Sequence
from pathlib import Path

from rubac.config import ClientSettings, split_items
from rubac.config.list_values import OPTS_DELIMITER
from rubac.exceptions import PreconditionError

DEFAULT_RSYNC = "rsync"
ATTRIBUTE_OPTIONS = "-a -v -v"
BACKUP_FIXED_OPTIONS = "--relative --delete-excluded --ignore-errors --one-file-system"
BACKUP_OPTIONS = f"{ATTRIBUTE_OPTIONS} {BACKUP_FIXED_OPTIONS}"
RESTORE_OPTIONS = "-a -r -v -v --relative --one-file-system"

# --link-dest first appeared in 2.5.6
MIN_RSYNC_VERSION = (2, 5, 6)
VERSION_RE = re.compile(r"version\s+(\d+)\.(\d+)\.(\d+)")


def backup_sources(settings: ClientSettings) -> list[str]:
    """Return the rsync source arguments for a client.

    Remote clients get every include prefixed with their address.
    """
    if settings.remote:
        return [f"{settings.address}:{inc}" for inc in settings.includes]
    return list(settings.includes)


def build_backup_command(
    settings: ClientSettings,
    target: Path,
    *,
    rsync: str = DEFAULT_RSYNC,
    base_options: str = BACKUP_OPTIONS,
    link_dest: Path | None = None,
    exclude_file: Path | None = None,
    delete: bool = True,
    dry_run: bool = False,
) -> list[str]:
    """Build the rsync command line of a backup run.

    Args:
        settings: Effective settings of the client
        target: Generation directory receiving the files
        rsync: rsync executable
        base_options: Options applied to every client
        link_dest: Earlier generation to hardlink unchanged files against
        exclude_file: File listing exclude patterns
        delete: Delete files that vanished from the source
        dry_run: Let rsync only report what it would do

    Returns:
        List of command arguments for rsync

    """
    cmd = [rsync, "-r"]
    cmd.extend(split_items(base_options, OPTS_DELIMITER))
    cmd.extend(settings.opts)

    if settings.compress:
        cmd.append("--compress")
    if dry_run:
        cmd.append("--dry-run")
    if delete:
        cmd.append("--delete")
    if link_dest is not None:
        cmd.append(f"--link-dest={link_dest}")
    if exclude_file is not None:
        cmd.append(f"--exclude-from={exclude_file}")

    cmd.extend(backup_sources(settings))
    cmd.append(str(target))
    return cmd


def build_restore_command(
    files_from: Path,
    source_dir: Path,
    destination: str,
    *,
    rsync: str = DEFAULT_RSYNC,
    options: str = RESTORE_OPTIONS,
    dry_run: bool = False,
) -> list[str]:
    """Build the rsync command line that restores listed files.

    Args:
        files_from: File with one path per line, relative to source_dir
        source_dir: Generation directory to restore from
        destination: Local path or host:path to restore to
        rsync: rsync executable
        options: Restore options
        dry_run: Let rsync only report what it would do

    Returns:
        List of command arguments for rsync

    """
    cmd = [rsync]
    cmd.extend(split_items(options, OPTS_DELIMITER))
    if dry_run:
        cmd.append("--dry-run")
    cmd.append(f"--files-from={files_from}")
    # Trailing slash: the listed paths are relative to the generation.
    cmd.append(f"{source_dir}/")
    cmd.append(destination)
    return cmd


def write_exclude_file(excludes: Sequence[str], path: Path) -> Path:
    """Write exclude patterns one per line."""
    path.write_text("".join(f"{pattern}\n" for pattern in excludes), encoding="utf-8")
    return path


def parse_rsync_version(output: str) -> tuple[int, int, int] | None:
    """Extract the version from `rsync --version` output."""
    match = VERSION_RE.search(output)
    if match is None:
        return None
    return int(match.group(1)), int(match.group(2)), int(match.group(3))


def check_rsync_version(rsync: str, logger: logging.Logger) -> tuple[int, int, int]:
    """Make sure the rsync executable supports --link-dest.

    Returns:
        The detected version

    Raises:
        PreconditionError: If rsync is missing, unparsable or too old

    """
    try:
        result = subprocess.run(  # noqa: S603
            [rsync, "--version"],
            check=False,
            capture_output=True,
            text=True,
        )
    except OSError as e:
        error_msg = f"Cannot run {rsync}: {e}"
        raise PreconditionError(error_msg, original_error=e) from e

    version = parse_rsync_version(result.stdout or "")
    if version is None:
        error_msg = f"Cannot determine the version of {rsync}"
        raise PreconditionError(error_msg)

    version_str = ".".join(str(part) for part in version)
    if version < MIN_RSYNC_VERSION:
        minimum = ".".join(str(part) for part in MIN_RSYNC_VERSION)
        error_msg = f"rsync version {version_str} is too old, need {minimum} or newer"
        raise PreconditionError(error_msg)

    logger.debug(f"rsync version {version_str}")
    return version
