"""Generation table rotation and selector resolution."""

from .generation_table import GenerationTable, client_directory
from .selector import SELECT_NEWEST, SELECT_OLDEST, SelectResolver

__all__ = [
    "SELECT_NEWEST",
    "SELECT_OLDEST",
    "GenerationTable",
    "SelectResolver",
    "client_directory",
]
