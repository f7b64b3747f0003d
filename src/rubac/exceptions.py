"""Exceptions raised by the rubac backup engine."""


class RubacError(Exception):
    """Base exception for all rubac errors."""

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        """Initialize the exception with message and optional original error."""
        super().__init__(message)
        self.original_error = original_error
        self.message = message


class ConfigError(RubacError):
    """Raised when the persisted configuration is malformed or inconsistent."""


class InvalidOperationError(ConfigError):
    """Raised for an unknown update operation or configuration key.

    This signals a construction bug in the caller, so it aborts the whole
    process instead of only the current client.
    """


class LockBusyError(RubacError):
    """Raised when another run already holds the client run lock."""


class PreconditionError(RubacError):
    """Raised when an operation cannot start, e.g. a snapshot without a base."""


class NotFoundError(RubacError):
    """Raised when a selector, generation or manifest does not exist."""


class ManifestError(RubacError):
    """Raised when a manifest file exists but cannot be read."""


class SyncFailedError(RubacError):
    """Raised when the rsync process exits with a non-zero status."""

    def __init__(
        self,
        message: str,
        returncode: int | None = None,
        tail: list[str] | None = None,
        original_error: Exception | None = None,
    ) -> None:
        """Initialize with the exit status and the last lines of rsync output."""
        super().__init__(message, original_error)
        self.returncode = returncode
        self.tail = tail or []


# Errors that abort a single client but let a batch continue.
RECOVERABLE_ERRORS = (
    LockBusyError,
    PreconditionError,
    SyncFailedError,
    NotFoundError,
    ManifestError,
)
