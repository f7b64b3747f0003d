"""Per-generation manifests: the set of paths present in a generation."""

import logging
import re
from pathlib import Path

import yaml

from rubac.exceptions import ManifestError, PreconditionError
from rubac.manifest.classifier import ClassifiedLine, LineKind, OutputClassifier

MANIFEST_NAME = "rubac.log.yaml"


class ManifestStore:
    """Reads, updates and writes generation manifests.

    A manifest is a path index only. File metadata is looked up live in
    the generation directory when it is needed.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self.logger = logger

    @staticmethod
    def manifest_path(generation_dir: Path) -> Path:
        """Return the manifest file of a generation."""
        return generation_dir / MANIFEST_NAME

    def exists(self, generation_dir: Path) -> bool:
        """Whether the generation has a manifest."""
        return self.manifest_path(generation_dir).is_file()

    def load(self, generation_dir: Path) -> set[str]:
        """Load a generation's manifest.

        Returns:
            The recorded paths, empty if there is no manifest yet

        Raises:
            ManifestError: If the manifest file cannot be read

        """
        path = self.manifest_path(generation_dir)
        if not path.exists():
            return set()

        try:
            with path.open(encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            error_msg = f"Cannot read manifest {path}: {e}"
            raise ManifestError(error_msg, original_error=e) from e

        if data is None:
            return set()
        if not isinstance(data, list):
            error_msg = f"Manifest {path} is not a list of paths"
            raise ManifestError(error_msg)

        paths = {str(entry) for entry in data}
        self.logger.debug(f"Manifest found: loaded {path} with {len(paths)} entries")
        return paths

    def save(self, generation_dir: Path, paths: set[str]) -> None:
        """Write a generation's manifest, paths sorted and unique."""
        path = self.manifest_path(generation_dir)
        tmp_path = path.with_name(f".{path.name}.tmp")
        self.logger.debug(f"Manifest length={len(paths)} to {path}")
        try:
            with tmp_path.open("w", encoding="utf-8") as out:
                yaml.safe_dump(sorted(paths), out, default_flow_style=False)
            tmp_path.replace(path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            error_msg = f"Cannot write manifest {path}: {e}"
            raise ManifestError(error_msg, original_error=e) from e

    @staticmethod
    def apply_outcome(
        paths: set[str],
        line: str,
        classifier: OutputClassifier,
    ) -> ClassifiedLine:
        """Classify an rsync output line and apply it to a path set.

        Args:
            paths: Manifest paths, updated in place
            line: One line of rsync output
            classifier: Classifier holding the run's include prefixes

        Returns:
            The classification of the line

        """
        classified = classifier.classify(line)
        if classified.kind in (LineKind.UNCHANGED, LineKind.SYNCED) and classified.path:
            paths.add(classified.path)
        elif classified.kind is LineKind.DELETED and classified.path:
            paths.discard(classified.path)
        return classified

    def search(self, generation_dir: Path, pattern: str) -> list[str]:
        """Return manifest paths matching a pattern, ignoring case.

        Raises:
            PreconditionError: If the pattern is not a valid regular expression
            ManifestError: If the manifest cannot be read

        """
        try:
            regex = re.compile(pattern, re.IGNORECASE)
        except re.error as e:
            error_msg = f"Invalid search pattern '{pattern}': {e}"
            raise PreconditionError(error_msg, original_error=e) from e
        return sorted(path for path in self.load(generation_dir) if regex.search(path))
