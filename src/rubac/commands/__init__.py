"""Query and maintenance commands on existing generations."""

from .context import CommandContext
from .history import show_history
from .listing import LIST_COMPACT, SettingsLister
from .prune import prune_generation
from .restore import (
    Restorer,
    read_restore_list,
    restore_destination,
    split_restore_paths,
    write_restore_list,
)
from .search import GenerationSearch, SearchHit, file_type, md5sum

__all__ = [
    "LIST_COMPACT",
    "CommandContext",
    "GenerationSearch",
    "Restorer",
    "SearchHit",
    "SettingsLister",
    "file_type",
    "md5sum",
    "prune_generation",
    "read_restore_list",
    "restore_destination",
    "show_history",
    "split_restore_paths",
    "write_restore_list",
]
