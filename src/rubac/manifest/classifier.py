"""Classification of rsync output lines.

Rules are tried in this order, the first match wins:

| Kind             | Line shape                                          | Manifest effect |
|------------------|-----------------------------------------------------|-----------------|
| TRANSFER_SUMMARY | sent N bytes  received N bytes  N bytes/sec          | none            |
| SIZE_SUMMARY     | total size is N  speedup is N                       | none            |
| UNCHANGED        | <path> is uptodate                                  | add /<path>     |
| DELETED          | deleting <path>                                     | remove /<path>  |
| SYNCED           | <path> at or below an include, not rsync chatter    | add /<path>     |
| OTHER            | anything else                                       | none            |
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from rubac.config.list_values import normalize_include


class LineKind(Enum):
    """Outcome reported by a single rsync output line."""

    TRANSFER_SUMMARY = "transfer_summary"
    SIZE_SUMMARY = "size_summary"
    UNCHANGED = "unchanged"
    DELETED = "deleted"
    SYNCED = "synced"
    OTHER = "other"


@dataclass(frozen=True)
class ClassifiedLine:
    """A classified rsync output line.

    Attributes:
        kind: Which rule matched
        line: The raw line without its line terminator
        path: Absolute style path for content lines, None otherwise
        values: Numbers captured from summary lines, as printed

    """

    kind: LineKind
    line: str
    path: str | None = None
    values: tuple[str, ...] = field(default_factory=tuple)


TRANSFER_SUMMARY_RE = re.compile(
    r"sent\s+([\d.,]+)\s+bytes\s+received\s+([\d.,]+)\s+bytes\s+([\d.,]+)\s+bytes/sec",
)
SIZE_SUMMARY_RE = re.compile(r"total size is\s+([\d.,]+)\s+speedup is\s+([\d.,]+)")
UNCHANGED_RE = re.compile(r"^(?P<path>.*)\sis uptodate$")
DELETED_RE = re.compile(r"^\s*deleting\s+(?P<path>.*)$")
# Progress and diagnostic lines of rsync -v -v, never paths
CHATTER_RE = re.compile(
    r"^(?:(?:sending|receiving) incremental file list"
    r"|building file list"
    r"|created directory\s"
    r"|delta-transmission\s"
    r"|\[\w+\]\s"
    r"|rsync(?::|\s+error|\s+warning)"
    r"|total: matches="
    r"|done$"
    r"|opening connection\s"
    r"|file has vanished:"
    r"|IO error encountered"
    r"|cannot delete non-empty directory:"
    r"|skipping non-regular file)",
)


def _absolute(path: str) -> str:
    return path if path.startswith("/") else "/" + path


class OutputClassifier:
    """Classifies the lines rsync prints for one backup run."""

    def __init__(self, includes: Iterable[str]) -> None:
        """Initialize with the include paths of the run.

        rsync prints transferred paths relative to the root because of
        --relative, so a line is a synced path when it is an include
        stripped of its leading slash, or lies below one. The root include
        matches every line that is not rsync chatter.
        """
        self.prefixes = [normalize_include(inc).lstrip("/") for inc in includes]

    def _below_include(self, line: str) -> bool:
        if CHATTER_RE.match(line):
            return False
        return any(
            not prefix or line == prefix or line.startswith(prefix + "/") for prefix in self.prefixes
        )

    def classify(self, line: str) -> ClassifiedLine:
        """Return the classification of one output line."""
        line = line.rstrip("\r\n")

        match = TRANSFER_SUMMARY_RE.search(line)
        if match:
            return ClassifiedLine(LineKind.TRANSFER_SUMMARY, line, values=match.groups())

        match = SIZE_SUMMARY_RE.search(line)
        if match:
            return ClassifiedLine(LineKind.SIZE_SUMMARY, line, values=match.groups())

        match = UNCHANGED_RE.match(line)
        if match:
            return ClassifiedLine(LineKind.UNCHANGED, line, _absolute(match.group("path")))

        match = DELETED_RE.match(line)
        if match:
            return ClassifiedLine(LineKind.DELETED, line, _absolute(match.group("path")))

        if line and self._below_include(line):
            return ClassifiedLine(LineKind.SYNCED, line, "/" + line)

        return ClassifiedLine(LineKind.OTHER, line)
