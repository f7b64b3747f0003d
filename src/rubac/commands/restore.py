"""Restoring files from a generation with rsync."""

import logging
import os
import re
import tempfile
from collections.abc import Callable, Iterable
from datetime import datetime
from pathlib import Path

from rubac.commands.context import CommandContext
from rubac.config import ClientSettings
from rubac.exceptions import NotFoundError, PreconditionError, SyncFailedError
from rubac.rsync import RsyncProcess, build_restore_command

RESTORE_LIST_PREFIX = "rubac.restore_from."
RESTORE_LIST_SUFFIX = ".dat"
RESTORE_LIST_DATE_FORMAT = "%Y%m%d"
LIST_SPLIT_RE = re.compile(r"[,\n]")


def read_restore_list(path: Path, logger: logging.Logger) -> list[str]:
    """Read the paths to restore from an operator supplied file.

    Entries are separated by commas or newlines. Comments and relative
    paths are skipped.

    Raises:
        NotFoundError: If the file does not exist

    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        error_msg = f"--restore-from {path} not found"
        raise NotFoundError(error_msg, original_error=e) from e

    entries: list[str] = []
    for raw in LIST_SPLIT_RE.split(text):
        entry = raw.strip()
        if not entry or entry.startswith("#"):
            continue
        if not entry.startswith("/"):
            logger.warning(f"Skipping relative restore path {entry}")
            continue
        logger.info(f"restoring {entry}")
        entries.append(entry)

    if not entries:
        logger.warning(f"restore-from {path} is empty")
    return entries


def split_restore_paths(paths: Iterable[str]) -> list[str]:
    """Split comma separated restore arguments into single paths."""
    return [part.strip() for item in paths for part in item.split(",") if part.strip()]


def write_restore_list(ctx: CommandContext, paths: list[str], now: datetime | None = None) -> Path:
    """Write the paths to restore to a new list file in the temporary directory.

    Every call gets a file of its own, named after the day it was written.
    """
    stamp = (now or datetime.now()).strftime(RESTORE_LIST_DATE_FORMAT)
    fd_num, tmp_name = tempfile.mkstemp(
        prefix=f"{RESTORE_LIST_PREFIX}{stamp}.", suffix=RESTORE_LIST_SUFFIX, dir=ctx.tmp_dir,
    )
    list_file = Path(tmp_name)
    with os.fdopen(fd_num, "w", encoding="utf-8") as fd:
        for path in paths:
            fd.write(f"{path}\n")
            ctx.logger.info(f"{path} >> {list_file}")
    return list_file


def restore_destination(ctx: CommandContext, settings: ClientSettings, restore_to: str | None) -> str:
    """Return where restored files go.

    Defaults to TMP/rubac/<client>. A destination without a host part is
    on the client itself when the client is remote.
    """
    destination = restore_to or str(ctx.tmp_dir / "rubac" / settings.client)
    if ":" in destination or not settings.remote:
        return destination
    return f"{settings.address}:{destination}"


class Restorer:
    """Copies listed paths from a generation back to a client."""

    def __init__(
        self,
        ctx: CommandContext,
        process_factory: Callable[[list[str]], RsyncProcess] | None = None,
    ) -> None:
        self.ctx = ctx
        self.process_factory = process_factory or (lambda cmd: RsyncProcess(cmd, ctx.logger))

    def restore(
        self,
        client: str,
        selected: str | None,
        paths: Iterable[str] = (),
        restore_from: Path | None = None,
        restore_to: str | None = None,
    ) -> str:
        """Restore files of a client.

        Args:
            client: Client whose backup is restored
            selected: Generation to restore from, the newest by default
            paths: Absolute paths to restore
            restore_from: File listing the paths to restore
            restore_to: Restore destination, local path or host:path

        Returns:
            The rsync destination the files were restored to

        Raises:
            PreconditionError: If there is no generation or nothing to restore
            NotFoundError: If the generation directory is missing
            SyncFailedError: If rsync fails

        """
        ctx = self.ctx
        source = selected or ctx.table.name_at(client, 0)
        if not source:
            error_msg = f"Nothing to restore for client {client}"
            raise PreconditionError(error_msg)

        source_dir = ctx.generation_dir(client, source)
        if not source_dir.is_dir():
            error_msg = f"Backup {source} of {client} not found at {source_dir}"
            raise NotFoundError(error_msg)
        ctx.logger.debug(f"Backup source = {source_dir}")

        entries = split_restore_paths(paths)
        if not entries and restore_from is not None:
            entries = read_restore_list(restore_from, ctx.logger)
        if not entries:
            error_msg = f"Nothing to restore for client {client}"
            raise PreconditionError(error_msg)

        settings = ctx.config_store.client_settings(client)
        destination = restore_destination(ctx, settings, restore_to)
        if ":" not in destination and not ctx.dry_run:
            Path(destination).mkdir(parents=True, exist_ok=True)

        list_file = write_restore_list(ctx, entries)
        cmd = build_restore_command(list_file, source_dir, destination, rsync=ctx.rsync, dry_run=ctx.dry_run)
        try:
            process = self.process_factory(cmd)
            last_dir: str | None = None
            for line in process.lines():
                if line.endswith(" is uptodate"):
                    ctx.logger.debug(f"{destination}/{line}")
                elif line.endswith("/"):
                    last_dir = line
                elif last_dir and line.startswith(last_dir):
                    ctx.logger.info(f"{destination}/{line}")
                else:
                    ctx.logger.info(f"${line}")
            returncode = process.wait()
        except OSError as e:
            error_msg = f"Restore of {client} from {source} failed: {e}"
            raise SyncFailedError(error_msg, original_error=e) from e
        finally:
            list_file.unlink(missing_ok=True)

        if returncode != 0:
            error_msg = f"Restore of {client} from {source} failed, rsync exit status {returncode}"
            ctx.logger.error(f"Command failed: {' '.join(cmd)}")
            raise SyncFailedError(error_msg, returncode=returncode, tail=list(process.tail))

        ctx.logger.info(f"Restored {len(entries)} path(s) of {client} from {source} to {destination}")
        return destination
