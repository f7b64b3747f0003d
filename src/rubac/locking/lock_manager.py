"""Exclusive, non-blocking run locks on client destination directories."""

import fcntl
import logging
import os
import types
from pathlib import Path
from typing import IO

from rubac.exceptions import LockBusyError

LOCK_FILE_NAME = "rubac.runlock"


class LockManager:
    """Holds an advisory flock on a lock file for the duration of a run.

    Acquisition never waits: a lock held by another process fails at once
    with LockBusyError. Release removes the lock file while still holding
    it, so a waiter left on the old file notices and locks the new one.
    """

    def __init__(self, lock_file: Path, logger: logging.Logger) -> None:
        """Initialize the LockManager.

        Args:
            lock_file: Path to the lock file
            logger: Logger instance for logging operations

        """
        self.lock_file = lock_file
        self.logger = logger
        self._handle: IO[str] | None = None

    @property
    def locked(self) -> bool:
        """Whether this instance currently holds the lock."""
        return self._handle is not None

    def __enter__(self) -> "LockManager":
        """Context manager entry point."""
        self.create_lock()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        """Context manager exit point."""
        self.release_lock()

    def create_lock(self) -> None:
        """Take the exclusive lock.

        A lock taken on a file that was unlinked and replaced in the meantime
        is dropped and taken again on the file now at the path.

        Raises:
            LockBusyError: If another process holds the lock

        """
        while True:
            handle = self.lock_file.open("a", encoding="utf-8")
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except OSError as e:
                handle.close()
                error_msg = f"Cannot lock {self.lock_file}, another run is active"
                self.logger.error(error_msg)
                raise LockBusyError(error_msg, original_error=e) from e
            if self._is_current(handle):
                break
            self.logger.debug(f"Lock file {self.lock_file} was replaced, locking again")
            handle.close()
        self._handle = handle
        self.logger.debug(f"Lock file {self.lock_file} acquired.")

    def _is_current(self, handle: IO[str]) -> bool:
        try:
            path_stat = os.stat(self.lock_file)
        except FileNotFoundError:
            return False
        handle_stat = os.fstat(handle.fileno())
        return (handle_stat.st_dev, handle_stat.st_ino) == (path_stat.st_dev, path_stat.st_ino)

    def release_lock(self) -> None:
        """Remove the lock file, then unlock it."""
        if self._handle is None:
            self.logger.warning("Lock file is not held when attempting to release.")
            return
        try:
            self.lock_file.unlink(missing_ok=True)
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
        finally:
            self._handle.close()
            self._handle = None
        self.logger.debug(f"Lock file {self.lock_file} released.")
