"""Profile configuration: typed global and client scopes persisted as YAML."""

from .config_store import (
    ClientConfig,
    ClientSettings,
    ConfigStore,
    ConfigVersion,
    GlobalConfig,
    UpdateOperation,
)
from .list_values import (
    LIST_DELIMITERS,
    join_items,
    merge_items,
    normalize_include,
    remove_items,
    split_items,
)

__all__ = [
    "LIST_DELIMITERS",
    "ClientConfig",
    "ClientSettings",
    "ConfigStore",
    "ConfigVersion",
    "GlobalConfig",
    "UpdateOperation",
    "join_items",
    "merge_items",
    "normalize_include",
    "remove_items",
    "split_items",
]
