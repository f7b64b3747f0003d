"""Search of generation manifests."""

import hashlib
import os
import stat
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from rubac.commands.context import CommandContext
from rubac.exceptions import ManifestError

MD5_CHUNK_SIZE = 65536


@dataclass(frozen=True)
class SearchHit:
    """A manifest path that matched and still exists in its generation."""

    client: str
    generation: str
    path: str
    location: Path
    stat: os.stat_result


def file_type(mode: int) -> str:
    """Return a readable file type for a stat mode."""
    if stat.S_ISLNK(mode):
        return "link"
    if stat.S_ISDIR(mode):
        return "directory"
    if stat.S_ISREG(mode):
        return "file"
    if stat.S_ISFIFO(mode):
        return "fifo"
    if stat.S_ISSOCK(mode):
        return "socket"
    if stat.S_ISCHR(mode):
        return "characterSpecial"
    if stat.S_ISBLK(mode):
        return "blockSpecial"
    return "unknown"


def md5sum(path: Path) -> str:
    """Return the md5 hex digest of a file."""
    digest = hashlib.md5()  # noqa: S324
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(MD5_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


class GenerationSearch:
    """Searches manifests for patterns and looks hits up on disk.

    Hardlinked copies of a file in several generations share an inode and
    are reported once per search.
    """

    def __init__(self, ctx: CommandContext) -> None:
        self.ctx = ctx
        self._seen: set[tuple[int, int]] = set()

    def search(
        self,
        client: str,
        patterns: Iterable[str],
        selected: str | None = None,
    ) -> list[SearchHit]:
        """Search the selected generation, or the whole history of a client.

        Args:
            client: Client whose generations are searched
            patterns: Regular expressions, matched ignoring case
            selected: Generation to search instead of the history

        Returns:
            The hits in pattern, then generation order

        """
        self._seen.clear()
        if selected:
            generations = [selected]
        else:
            generations = self.ctx.table.history(client, self.ctx.client_dir(client))
        if not generations:
            self.ctx.logger.info(f"No history for {client}")
            return []

        hits: list[SearchHit] = []
        for pattern in patterns:
            for generation in generations:
                hits.extend(self._search_generation(client, generation, pattern))
        return hits

    def _search_generation(self, client: str, generation: str, pattern: str) -> list[SearchHit]:
        logger = self.ctx.logger
        logger.info(f"Searching {generation} for '{pattern}'")

        basedir = self.ctx.generation_dir(client, generation)
        if not self.ctx.manifest_store.exists(basedir):
            logger.error(f"Opening {self.ctx.manifest_store.manifest_path(basedir)} failed, no manifest")
            return []
        try:
            matches = self.ctx.manifest_store.search(basedir, pattern)
        except ManifestError as e:
            logger.error(f"{client}: {e}")
            return []

        hits: list[SearchHit] = []
        for path in matches:
            location = basedir / path.lstrip("/")
            try:
                fstat = location.lstat()
            except FileNotFoundError:
                logger.error(f"Backup of {path} not found at {location}")
                continue

            key = (fstat.st_dev, fstat.st_ino)
            if key in self._seen:
                continue
            self._seen.add(key)

            if not hits:
                logger.info(f"basedir={basedir}")
            logger.info(path)
            hit = SearchHit(client, generation, path, location, fstat)
            hits.append(hit)
            if self.ctx.verbose:
                self._report_details(hit)
        return hits

    def _report_details(self, hit: SearchHit) -> None:
        fstat = hit.stat
        details = [("type", file_type(fstat.st_mode))]
        if stat.S_ISREG(fstat.st_mode):
            details.append(("md5sum", md5sum(hit.location)))
        details.extend(
            [
                ("size", str(fstat.st_size)),
                ("atime", str(datetime.fromtimestamp(fstat.st_atime))),
                ("mtime", str(datetime.fromtimestamp(fstat.st_mtime))),
                ("ctime", str(datetime.fromtimestamp(fstat.st_ctime))),
                ("uid:gid", f"{fstat.st_uid}:{fstat.st_gid}"),
                ("perm", f"{fstat.st_mode:o}"),
                ("ino", str(fstat.st_ino)),
            ],
        )
        for label, value in details:
            self.ctx.logger.info(f"{label:>8}={value}")
