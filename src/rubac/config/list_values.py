"""Helpers for list-valued settings.

Lists are ordered sequences of strings in memory. Delimiter-joined strings
only exist in the profile file and on the command line.
"""

from collections.abc import Iterable

INCLUDE_DELIMITER = ","
EXCLUDE_DELIMITER = ","
OPTS_DELIMITER = " "

LIST_DELIMITERS = {
    "includes": INCLUDE_DELIMITER,
    "excludes": EXCLUDE_DELIMITER,
    "opts": OPTS_DELIMITER,
}


def split_items(value: str | Iterable[str] | None, delimiter: str) -> list[str]:
    """Split a delimiter-joined string (or re-split a list) into stripped items.

    Empty items are dropped, order is kept.
    """
    if value is None:
        return []
    if isinstance(value, str):
        parts = value.split(delimiter)
    else:
        parts = [part for item in value for part in str(item).split(delimiter)]
    return [part.strip() for part in parts if part.strip()]


def join_items(items: Iterable[str], delimiter: str) -> str:
    """Join items for serialization."""
    return delimiter.join(items)


def merge_items(existing: Iterable[str], new: Iterable[str]) -> list[str]:
    """Return existing items followed by the new ones not already present."""
    merged = list(existing)
    for item in new:
        if item not in merged:
            merged.append(item)
    return merged


def remove_items(existing: Iterable[str], removed: Iterable[str]) -> list[str]:
    """Return existing items without the removed ones, order kept."""
    drop = set(removed)
    return [item for item in existing if item not in drop]


def normalize_include(path: str) -> str:
    """Strip a trailing path separator from an include, except for the root."""
    path = path.strip()
    if path == "/":
        return path
    return path.rstrip("/")
