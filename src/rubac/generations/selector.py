"""Resolution of operator selectors to generation names."""

import logging

from rubac.exceptions import NotFoundError
from rubac.generations.generation_table import GenerationTable

SELECT_NEWEST = "newest"
SELECT_OLDEST = "oldest"


class SelectResolver:
    """Maps a selector to a generation name of one client.

    Selectors are a slot number, "newest", "oldest" or a literal
    generation name. Literal names are returned as given; whether they
    exist on disk is for the caller to check.
    """

    def __init__(self, table: GenerationTable, logger: logging.Logger) -> None:
        self.table = table
        self.logger = logger

    def resolve(self, client: str, selector: str | None) -> str | None:
        """Resolve a selector.

        Args:
            client: Client the selector applies to
            selector: Operator supplied selector, None for no selection

        Returns:
            The generation name, or None when nothing was selected

        Raises:
            NotFoundError: If a numbered slot is empty

        """
        if selector is None or selector == "":
            return None

        if selector.isascii() and selector.isdigit():
            slot = int(selector)
            name = self.table.name_at(client, slot)
            if not name:
                error_msg = f"Nothing found for {client} in slot {slot}"
                raise NotFoundError(error_msg)
            return name

        if selector == SELECT_NEWEST:
            return self.table.name_at(client, 0) or None

        if selector == SELECT_OLDEST:
            # First non-empty slot counting down from the retention depth.
            for slot in range(self.table.ninc(client), -1, -1):
                name = self.table.name_at(client, slot)
                if name:
                    return name
            return None

        return selector
