"""Supervised rsync subprocess with streamed output."""

import logging
import subprocess
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass

from rubac.manifest import ClassifiedLine, LineKind

TAIL_SIZE = 10


@dataclass
class RsyncStats:
    """Statistics from an rsync operation."""

    sent: int = 0
    received: int = 0
    total_size: int = 0
    rate: float = 0.0
    speedup: float = 0.0

    @staticmethod
    def _parse_number_with_dots(number_str: str) -> int:
        """Parse a number string that may contain dots or commas as thousand separators.

        Args:
            number_str: Number string (e.g., "35.821.870" or "552,313")

        Returns:
            Integer value, 0 if the string holds no digits

        """
        cleaned = number_str.replace(".", "").replace(",", "")
        try:
            return int(cleaned)
        except ValueError:
            return 0

    @staticmethod
    def _parse_decimal(number_str: str) -> float:
        """Parse a rate or speedup printed with two decimals in either locale.

        The last separator is the decimal mark unless three digits follow it.

        Args:
            number_str: Number string (e.g., "1,956,481.59", "1.956.481,59" or "64,86")

        Returns:
            Float value, 0.0 if the string is not a number

        """
        separator = max(number_str.rfind("."), number_str.rfind(","))
        whole, fraction = number_str, ""
        if separator != -1 and len(number_str) - separator - 1 != 3:
            whole, fraction = number_str[:separator], number_str[separator + 1 :]
        digits = whole.replace(".", "").replace(",", "")
        try:
            return float(f"{digits}.{fraction}" if fraction else digits)
        except ValueError:
            return 0.0

    def record(self, classified: ClassifiedLine) -> bool:
        """Take the numbers of a summary line.

        Returns:
            True if the line was a summary line

        """
        if classified.kind is LineKind.TRANSFER_SUMMARY:
            sent, received, rate = classified.values
            self.sent = self._parse_number_with_dots(sent)
            self.received = self._parse_number_with_dots(received)
            self.rate = self._parse_decimal(rate)
            return True
        if classified.kind is LineKind.SIZE_SUMMARY:
            total_size, speedup = classified.values
            self.total_size = self._parse_number_with_dots(total_size)
            self.speedup = self._parse_decimal(speedup)
            return True
        return False


class RsyncProcess:
    """Runs rsync and yields its combined stdout and stderr line by line.

    The last lines are kept for failure reports. The exit status is only
    read after the output stream has been drained.
    """

    def __init__(self, cmd: list[str], logger: logging.Logger, tail_size: int = TAIL_SIZE) -> None:
        self.cmd = cmd
        self.logger = logger
        self.tail: deque[str] = deque(maxlen=tail_size)
        self._process: subprocess.Popen[str] | None = None

    def lines(self) -> Iterator[str]:
        """Start rsync and yield its output lines without line terminators."""
        self.logger.info(f"Executing command: {' '.join(self.cmd)}")
        self._process = subprocess.Popen(  # noqa: S603
            self.cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
        )
        if self._process.stdout is None:
            error_msg = "rsync output is not captured"
            raise RuntimeError(error_msg)
        with self._process.stdout as stdout:
            for raw in stdout:
                line = raw.rstrip("\n")
                self.tail.append(line)
                yield line

    def wait(self) -> int:
        """Wait for rsync to exit and return its exit status."""
        if self._process is None:
            error_msg = "rsync has not been started"
            raise RuntimeError(error_msg)
        return self._process.wait()

    def send_signal(self, signum: int) -> None:
        """Pass a signal on to a running rsync."""
        if self._process is not None and self._process.poll() is None:
            self.logger.debug(f"Forwarding signal {signum} to rsync pid {self._process.pid}")
            self._process.send_signal(signum)

    def stop(self) -> int | None:
        """Kill a still running rsync and reap it.

        Returns:
            The exit status, None if rsync was never started

        """
        if self._process is None:
            return None
        if self._process.poll() is None:
            self.logger.warning(f"Killing rsync pid {self._process.pid}")
            self._process.kill()
        return self._process.wait()
