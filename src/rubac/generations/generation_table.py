"""Generation naming and the slot rotation of a client's retention chain."""

import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from rubac.config import ConfigStore
from rubac.exceptions import NotFoundError

SNAPSHOT_INFIX = "snapshot"
DATE_FORMAT = "%Y-%m-%d"
DATE_TIME_FORMAT = "%Y-%m-%d_%H-%M-%S"


def client_directory(dest: Path, profile: str, client: str) -> Path:
    """Return the directory holding a client's generations."""
    return dest / profile / client


class GenerationTable:
    """Slot table of generation names for the clients of one profile.

    The table itself lives in the ConfigStore; this class knows how slots
    age, expire and get pruned. Slot 0 is the most recent generation.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        profile: str,
        logger: logging.Logger,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """Initialize the table.

        Args:
            config_store: Store holding the per-client incrementals
            profile: Profile name used as generation name prefix
            logger: Logger instance for logging operations
            clock: Source of the current time for generation names

        """
        self.config_store = config_store
        self.profile = profile
        self.logger = logger
        self.clock = clock

    def ninc(self, client: str) -> int:
        """Return the client's retention depth."""
        return self.config_store.get_client_ninc(client)

    def name_at(self, client: str, slot: int) -> str:
        """Return the generation name held by a slot, "" if unused."""
        return self.config_store.get_incremental(client, slot)

    def new_generation_name(self, client_dir: Path) -> str:
        """Return a fresh, date based generation name.

        A second run on the same day gets the time of day appended so it
        does not reuse the first run's directory.
        """
        now = self.clock()
        name = f"{self.profile}.{now.strftime(DATE_FORMAT)}"
        if (client_dir / name).exists():
            name = f"{self.profile}.{now.strftime(DATE_TIME_FORMAT)}"
        return name

    def snapshot_name(self, label: str) -> str:
        """Return the generation name of a snapshot."""
        return f"{self.profile}.{SNAPSHOT_INFIX}.{Path(label).name}"

    def is_snapshot(self, name: str) -> bool:
        """Whether a generation name belongs to a snapshot."""
        return name.startswith(f"{self.profile}.{SNAPSHOT_INFIX}.")

    def rotate(self, client: str, client_dir: Path) -> Path | None:
        """Age every generation by one slot before a full run.

        Only table pointers move, directories keep their names. A slot whose
        directory vanished from disk breaks the chain: it and the slot it
        would have moved into are cleared.

        Args:
            client: Client whose table is rotated
            client_dir: Directory holding the client's generations

        Returns:
            The directory that dropped out of the oldest slot, if any

        """
        ninc = self.ninc(client)
        expire: Path | None = None

        for m in range(ninc, 0, -1):
            n = m - 1
            nname = self.name_at(client, n)
            mname = self.name_at(client, m)
            self.logger.debug(f"n={n} nname={nname} m={m} mname={mname}")

            if not nname:
                continue

            if not (client_dir / nname).exists():
                self.logger.error(
                    f"Incremental backup {nname} of {client} not found, "
                    f"clearing slots {n} and {m}",
                )
                self.config_store.set_incremental(client, m, "")
                self.config_store.set_incremental(client, n, "")
                continue

            if m == ninc and mname and (client_dir / mname).exists():
                expire = client_dir / mname

            self.config_store.set_incremental(client, m, nname)

        return expire

    def history(self, client: str, client_dir: Path, index: int | None = None) -> list[str]:
        """Return a client's generations, newest first.

        Numbered slots are listed up to the first empty one, followed by
        the snapshots found on disk.

        Args:
            client: Client to list
            client_dir: Directory holding the client's generations
            index: Restrict the numbered part to this slot

        Returns:
            Generation names

        """
        entries: list[str] = []
        for slot in range(self.ninc(client) + 1):
            if index is not None and index != slot:
                continue
            name = self.name_at(client, slot)
            if not name:
                break
            entries.append(name)

        if index is not None or not client_dir.is_dir():
            return entries

        snapshots = sorted(
            path.name
            for path in client_dir.glob(f"{self.profile}.{SNAPSHOT_INFIX}.*")
            if path.is_dir()
        )
        return entries + snapshots

    def slot_of(self, client: str, name: str) -> int | None:
        """Return the slot holding a generation name, None if it holds no slot."""
        for slot in range(self.ninc(client) + 1):
            if name and self.name_at(client, slot) == name:
                return slot
        return None

    def prune(self, client: str, name: str) -> int | None:
        """Drop a generation from the table.

        Later numbered slots move down by one so the chain stays contiguous.
        Snapshots hold no slot and leave the table untouched.

        Returns:
            The slot the generation held, None for a snapshot

        Raises:
            NotFoundError: If the generation is not in the table

        """
        slot = self.slot_of(client, name)
        if slot is None:
            if self.is_snapshot(name):
                return None
            error_msg = f"Generation {name} of {client} holds no slot"
            raise NotFoundError(error_msg)

        last = slot
        while last + 1 <= self.ninc(client) and self.name_at(client, last + 1):
            last += 1

        for x in range(slot, last):
            moved = self.name_at(client, x + 1)
            self.logger.info(f"{client} slot {x}: {moved}")
            self.config_store.set_incremental(client, x, moved)
        self.config_store.set_incremental(client, last, "")
        return slot
