"""Run lock functionality guarding generations against concurrent runs."""

from .lock_manager import LOCK_FILE_NAME, LockManager

__all__ = ["LOCK_FILE_NAME", "LockManager"]
