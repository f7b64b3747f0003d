"""Shared collaborators of the generation commands."""

import logging
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from rubac.config import ConfigStore
from rubac.generations import GenerationTable, client_directory
from rubac.manifest import ManifestStore
from rubac.rsync import DEFAULT_RSYNC


@dataclass
class CommandContext:
    """Everything a history, search, prune or restore command works with."""

    config_store: ConfigStore
    table: GenerationTable
    manifest_store: ManifestStore
    logger: logging.Logger
    dest: Path
    dry_run: bool = False
    verbose: bool = False
    rsync: str = DEFAULT_RSYNC
    tmp_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))

    @property
    def profile(self) -> str:
        """Profile the commands act on."""
        return self.table.profile

    def client_dir(self, client: str) -> Path:
        """Return the directory holding a client's generations."""
        return client_directory(self.dest, self.profile, client)

    def generation_dir(self, client: str, name: str) -> Path:
        """Return the directory of one generation."""
        return self.client_dir(client) / name
