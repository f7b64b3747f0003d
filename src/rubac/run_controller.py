"""Lifecycle of a single client backup run.

A run goes through IDLE -> LOCK_ACQUIRED -> GENERATION_SELECTED -> SYNCING
and ends COMMITTED or ROLLED_BACK, then UNLOCKED. The lock is released on
every path out of SYNCING, including termination signals.
"""

import logging
import os
import shutil
import signal
import tempfile
import types
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from rubac.config import ConfigStore
from rubac.exceptions import PreconditionError, SyncFailedError
from rubac.generations import GenerationTable, client_directory
from rubac.locking import LOCK_FILE_NAME, LockManager
from rubac.manifest import LineKind, ManifestStore, OutputClassifier
from rubac.rsync import (
    BACKUP_OPTIONS,
    DEFAULT_RSYNC,
    RsyncProcess,
    RsyncStats,
    build_backup_command,
    write_exclude_file,
)


class RunMode(Enum):
    """Kinds of backup run."""

    FULL = "run"
    UPDATE = "update"
    SNAPSHOT = "snapshot"


class RunState(Enum):
    """States of the run lifecycle."""

    IDLE = "idle"
    LOCK_ACQUIRED = "lock_acquired"
    GENERATION_SELECTED = "generation_selected"
    SYNCING = "syncing"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    UNLOCKED = "unlocked"


@dataclass
class RunResult:
    """Outcome of a successful run."""

    client: str
    mode: RunMode
    generation: str
    target: Path
    link_dest: Path | None = None
    expired: Path | None = None
    returncode: int = 0
    dry_run: bool = False
    manifest_size: int = 0
    stats: RsyncStats = field(default_factory=RsyncStats)


class SignalGuard:
    """Turns termination signals into a recorded stop request.

    While active, SIGTERM, SIGINT and SIGHUP do not kill this process. They
    are recorded and passed on to the attached rsync process so it exits on
    its own. The handlers active before entry are restored on exit.
    """

    SIGNALS = (signal.SIGTERM, signal.SIGINT, signal.SIGHUP)

    def __init__(self, logger: logging.Logger) -> None:
        self.logger = logger
        self.received: list[int] = []
        self._previous: dict[int, Any] = {}
        self._process: RsyncProcess | None = None

    @property
    def interrupted(self) -> bool:
        """Whether a signal arrived while the guard was active."""
        return bool(self.received)

    def attach(self, process: RsyncProcess | None) -> None:
        """Forward received signals to this process."""
        self._process = process

    def _handle(self, signum: int, _frame: types.FrameType | None) -> None:
        self.logger.warning(f"{signal.Signals(signum).name} signal received, stopping")
        self.received.append(signum)
        if self._process is not None:
            self._process.send_signal(signum)

    def __enter__(self) -> "SignalGuard":
        """Install the recording handlers."""
        for signum in self.SIGNALS:
            self._previous[signum] = signal.signal(signum, self._handle)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        """Restore the previous handlers."""
        for signum, handler in self._previous.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
        self._previous.clear()
        self._process = None


ProcessFactory = Callable[[list[str]], RsyncProcess]


class RunController:
    """Runs full, update and snapshot backups of one client at a time."""

    def __init__(
        self,
        config_store: ConfigStore,
        manifest_store: ManifestStore,
        table: GenerationTable,
        logger: logging.Logger,
        dest: Path,
        *,
        rsync: str = DEFAULT_RSYNC,
        base_options: str = BACKUP_OPTIONS,
        dry_run: bool = False,
        tmp_dir: Path | None = None,
        process_factory: ProcessFactory | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            config_store: Profile configuration, saved on commit
            manifest_store: Store for generation manifests
            table: Generation table of the profile
            logger: Logger instance for logging operations
            dest: Initialized backup destination
            rsync: rsync executable
            base_options: rsync options applied to every client
            dry_run: Pass --dry-run to rsync and commit nothing
            tmp_dir: Directory for exclude files (defaults to system temp dir)
            process_factory: Creates the rsync process for a command line

        """
        self.config_store = config_store
        self.manifest_store = manifest_store
        self.table = table
        self.logger = logger
        self.dest = dest
        self.rsync = rsync
        self.base_options = base_options
        self.dry_run = dry_run
        self.tmp_dir = tmp_dir or Path(tempfile.gettempdir())
        self.process_factory = process_factory or (
            lambda cmd: RsyncProcess(cmd, self.logger)
        )
        self.state = RunState.IDLE
        self.trace: list[RunState] = []

    @property
    def profile(self) -> str:
        """Profile whose generations are managed."""
        return self.table.profile

    def client_dir(self, client: str) -> Path:
        """Return the directory holding a client's generations."""
        return client_directory(self.dest, self.profile, client)

    def _set_state(self, state: RunState) -> None:
        self.logger.debug(f"run state {self.state.value} -> {state.value}")
        self.state = state
        self.trace.append(state)

    def run(
        self,
        client: str,
        mode: RunMode = RunMode.FULL,
        *,
        snapshot_label: str | None = None,
        link_name: str | None = None,
    ) -> RunResult:
        """Back up one client.

        Args:
            client: Client to back up
            mode: Full run, in-place update or snapshot
            snapshot_label: Label of the snapshot in snapshot mode
            link_name: Generation a snapshot links against (defaults to newest)

        Returns:
            Details of the committed run

        Raises:
            PreconditionError: If nothing is included or a snapshot has no base
            LockBusyError: If another run holds the client's lock
            SyncFailedError: If rsync failed or the run was interrupted

        """
        self.state = RunState.IDLE
        self.trace = [RunState.IDLE]

        settings = self.config_store.client_settings(client)
        if not settings.includes:
            error_msg = f"Nothing included in backup of {client}"
            raise PreconditionError(error_msg)
        if mode is RunMode.SNAPSHOT and not snapshot_label:
            error_msg = f"Snapshot of {client} needs a name"
            raise PreconditionError(error_msg)

        client_dir = self.client_dir(client)
        client_dir.mkdir(parents=True, exist_ok=True)

        lock = LockManager(client_dir / LOCK_FILE_NAME, self.logger)
        with SignalGuard(self.logger) as guard:
            try:
                lock.create_lock()
                self._set_state(RunState.LOCK_ACQUIRED)
                return self._locked_run(client, mode, snapshot_label, link_name, guard)
            finally:
                if lock.locked:
                    lock.release_lock()
                    self._set_state(RunState.UNLOCKED)

    def _select(
        self,
        client: str,
        client_dir: Path,
        mode: RunMode,
        snapshot_label: str | None,
        link_name: str | None,
    ) -> tuple[str, Path | None, Path | None]:
        """Return the target name, link directory and expired directory."""
        if mode is RunMode.SNAPSHOT:
            name = self.table.snapshot_name(snapshot_label or "")
            base = link_name or self.table.name_at(client, 0)
            if not base or not (client_dir / base).is_dir():
                error_msg = f"Run one backup of {client} before doing a snapshot"
                raise PreconditionError(error_msg)
            return name, client_dir / base, None

        current = self.table.name_at(client, 0)
        if mode is RunMode.UPDATE or self.table.ninc(client) == 0:
            return current or self.table.new_generation_name(client_dir), None, None

        name = self.table.new_generation_name(client_dir)
        if not current:
            return name, None, None

        expire = self.table.rotate(client, client_dir)
        link = client_dir / current
        return name, link if link.is_dir() else None, expire

    def _locked_run(
        self,
        client: str,
        mode: RunMode,
        snapshot_label: str | None,
        link_name: str | None,
        guard: SignalGuard,
    ) -> RunResult:
        settings = self.config_store.client_settings(client)
        client_dir = self.client_dir(client)
        saved_table = self.config_store.incrementals(client)

        name, link, expire = self._select(client, client_dir, mode, snapshot_label, link_name)
        target = client_dir / name
        created = not target.exists()
        self._set_state(RunState.GENERATION_SELECTED)

        self.logger.debug(f"bdir={target} ldir={link}")
        if mode is RunMode.UPDATE:
            self.logger.info(f"Running update on {target}")

        exclude_file: Path | None = None
        stats = RsyncStats()
        returncode: int | None = None
        paths: set[str] = set()
        process: RsyncProcess | None = None
        cmd: list[str] = []
        try:
            target.mkdir(parents=True, exist_ok=True)
            paths = self.manifest_store.load(target)
            if settings.excludes:
                fd, tmp_name = tempfile.mkstemp(
                    prefix=f"{name}.{client}.", suffix=".excl", dir=self.tmp_dir,
                )
                os.close(fd)
                exclude_file = write_exclude_file(settings.excludes, Path(tmp_name))

            cmd = build_backup_command(
                settings,
                target,
                rsync=self.rsync,
                base_options=self.base_options,
                link_dest=link,
                exclude_file=exclude_file,
                delete=mode is not RunMode.UPDATE,
                dry_run=self.dry_run,
            )
            self._log_plan(settings.includes, mode, link, exclude_file, target)

            self._set_state(RunState.SYNCING)
            process = self.process_factory(cmd)
            guard.attach(process)
            classifier = OutputClassifier(settings.includes)
            for line in process.lines():
                classified = self.manifest_store.apply_outcome(paths, line, classifier)
                if stats.record(classified):
                    self.logger.info(f"\t{line}")
                elif classified.kind is LineKind.OTHER:
                    self.logger.debug(f"$ {line}")
                else:
                    self.logger.debug(f"{classified.kind.value}: {classified.path}")
            returncode = process.wait()
        except OSError as e:
            self._abort(process, client, target, created, saved_table)
            error_msg = f"Backup of {client} to {target} failed: {e}"
            raise SyncFailedError(error_msg, original_error=e) from e
        except Exception:
            self._abort(process, client, target, created, saved_table)
            raise
        finally:
            guard.attach(None)
            if exclude_file is not None:
                exclude_file.unlink(missing_ok=True)

        if returncode != 0 or guard.interrupted:
            tail = list(process.tail) if process is not None else []
            self.logger.error(f"Command failed: {' '.join(cmd)}")
            self.logger.error(" >>>> command output <<<<")
            for line in tail:
                self.logger.error(f" >> {line}")
            if mode is RunMode.UPDATE and not created and not self.dry_run:
                self.manifest_store.save(target, paths)
            self._roll_back(client, target, created, saved_table)
            if guard.interrupted:
                error_msg = f"Backup of {client} aborted on signal"
            else:
                error_msg = f"Backup of {client} failed, rsync exit status {returncode}"
            raise SyncFailedError(error_msg, returncode=returncode, tail=tail)

        self._commit(client, mode, name, target, created, expire, paths, saved_table)
        return RunResult(
            client=client,
            mode=mode,
            generation=name,
            target=target,
            link_dest=link,
            expired=expire,
            returncode=returncode,
            dry_run=self.dry_run,
            manifest_size=len(paths),
            stats=stats,
        )

    def _log_plan(
        self,
        includes: list[str],
        mode: RunMode,
        link: Path | None,
        exclude_file: Path | None,
        target: Path,
    ) -> None:
        self.logger.info(f"Backup {','.join(includes)}")
        if mode is not RunMode.UPDATE:
            self.logger.info("\t--delete")
        if link is not None:
            self.logger.info(f"\t--link-dest    {link}")
        if exclude_file is not None:
            self.logger.info(f"\t--exclude-from {exclude_file}")
        self.logger.info(f"\t               {target}")

    def _commit(
        self,
        client: str,
        mode: RunMode,
        name: str,
        target: Path,
        created: bool,
        expire: Path | None,
        paths: set[str],
        saved_table: dict[int, str],
    ) -> None:
        if self.dry_run:
            self.logger.info("Dry run, nothing committed")
            self.config_store.replace_incrementals(client, saved_table)
            if created and target.exists():
                shutil.rmtree(target)
            self._set_state(RunState.COMMITTED)
            return

        if expire is not None and expire.exists():
            self.logger.info(f"Deleting expired incremental: {expire}")
            shutil.rmtree(expire)
        if mode is not RunMode.SNAPSHOT:
            self.config_store.set_incremental(client, 0, name)
        self.config_store.save(self.profile)
        self.manifest_store.save(target, paths)
        self.logger.info(f"Backup of {client} to {target} complete, {len(paths)} paths")
        self._set_state(RunState.COMMITTED)

    def _abort(
        self,
        process: RsyncProcess | None,
        client: str,
        target: Path,
        created: bool,
        saved_table: dict[int, str],
    ) -> None:
        """Stop rsync and roll back after an error inside the sync."""
        if process is not None:
            process.stop()
        self._roll_back(client, target, created, saved_table)

    def _roll_back(
        self,
        client: str,
        target: Path,
        created: bool,
        saved_table: dict[int, str],
    ) -> None:
        self.config_store.replace_incrementals(client, saved_table)
        if created and target.exists():
            self.logger.info(f"Deleting incomplete backup {target}")
            shutil.rmtree(target)
        elif target.exists():
            self.logger.error(f"Backup in {target} failed, keeping it as is")
        self._set_state(RunState.ROLLED_BACK)
