"""Accumulation of log records for one notification mail per batch."""

import logging
import shutil
from collections.abc import Iterable
from pathlib import Path

from rubac.mail.mailer import Mailer

BYTES_PER_MB = 1024 * 1024


def disk_usage_report(path: Path) -> str:
    """Return a one line usage summary of the filesystem holding path."""
    try:
        usage = shutil.disk_usage(path)
    except OSError as e:
        return f"Disk usage of {path} unavailable: {e}"
    percent = usage.used * 100 // usage.total if usage.total else 0
    return (
        f"{path}: {usage.total // BYTES_PER_MB}M total, "
        f"{usage.used // BYTES_PER_MB}M used, "
        f"{usage.free // BYTES_PER_MB}M free ({percent}% used)"
    )


def batch_subject(command: str, profile: str, clients: Iterable[str]) -> str:
    """Return the subject of a batch notification."""
    return f"{command}: {profile}:{','.join(clients)}"


class NotificationBuffer(logging.Handler):
    """Logging handler that keeps formatted records until they are mailed."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        self.lines: list[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        """Keep the formatted record."""
        try:
            self.lines.append(self.format(record))
        except Exception:  # noqa: BLE001
            self.handleError(record)

    def body(self, footer: Iterable[str] = ()) -> str:
        """Return the accumulated records followed by footer lines."""
        return "\n".join([*self.lines, "", *footer])

    def clear(self) -> None:
        """Drop the accumulated records."""
        self.lines.clear()

    def send(self, mailer: Mailer, subject: str, footer: Iterable[str] = ()) -> bool:
        """Mail the accumulated records and start over.

        Returns:
            True if the mail was sent

        """
        message = self.body(footer)
        self.clear()
        return mailer.send_mail_with_retries(subject, message)
