"""Tests for generation manifests."""

import logging
import tempfile
from pathlib import Path
from unittest.mock import Mock

import pytest
import yaml

from rubac.exceptions import ManifestError, PreconditionError
from rubac.manifest import MANIFEST_NAME, LineKind, ManifestStore, OutputClassifier


def make_store() -> ManifestStore:
    """Create a store with a mock logger."""
    return ManifestStore(Mock(spec=logging.Logger))


class TestManifestStore:
    """Test cases for ManifestStore."""

    def test_load_missing_manifest(self) -> None:
        """Test that a generation without manifest has no paths."""
        with tempfile.TemporaryDirectory() as temp_dir:
            store = make_store()

            assert store.exists(Path(temp_dir)) is False
            assert store.load(Path(temp_dir)) == set()

    def test_save_sorted(self) -> None:
        """Test that manifests are written sorted."""
        with tempfile.TemporaryDirectory() as temp_dir:
            store = make_store()
            store.save(Path(temp_dir), {"/home/b", "/etc/a", "/home/a"})

            data = yaml.safe_load((Path(temp_dir) / MANIFEST_NAME).read_text())

            assert data == ["/etc/a", "/home/a", "/home/b"]
            assert store.load(Path(temp_dir)) == {"/etc/a", "/home/a", "/home/b"}

    def test_load_broken_manifest(self) -> None:
        """Test that an unreadable manifest raises ManifestError."""
        with tempfile.TemporaryDirectory() as temp_dir:
            (Path(temp_dir) / MANIFEST_NAME).write_text("- [broken")

            with pytest.raises(ManifestError):
                make_store().load(Path(temp_dir))

    def test_load_manifest_not_a_list(self) -> None:
        """Test that a manifest must be a list."""
        with tempfile.TemporaryDirectory() as temp_dir:
            (Path(temp_dir) / MANIFEST_NAME).write_text("path: /etc\n")

            with pytest.raises(ManifestError, match="not a list"):
                make_store().load(Path(temp_dir))

    def test_apply_outcome(self) -> None:
        """Test that output lines update the path set."""
        classifier = OutputClassifier(["/home"])
        paths = {"/home/old"}

        ManifestStore.apply_outcome(paths, "home/new", classifier)
        ManifestStore.apply_outcome(paths, "home/kept is uptodate", classifier)
        result = ManifestStore.apply_outcome(paths, "deleting home/old", classifier)

        assert result.kind is LineKind.DELETED
        assert paths == {"/home/new", "/home/kept"}

    def test_apply_outcome_with_repeated_lines(self) -> None:
        """Test that repeated and reordered lines give the same manifest as a clean run."""
        classifier = OutputClassifier(["/home"])
        lines = [
            "home/a",
            "home/b is uptodate",
            "home/a",
            "deleting home/gone",
            "home/b is uptodate",
            "home/c",
            "deleting home/gone",
            "home/a is uptodate",
        ]
        clean = {"/home/gone"}
        shuffled = {"/home/gone"}

        for line in lines:
            ManifestStore.apply_outcome(clean, line, classifier)
        for line in [lines[5], lines[3], lines[1], lines[0], lines[6], lines[7], lines[2], lines[4]]:
            ManifestStore.apply_outcome(shuffled, line, classifier)

        assert clean == {"/home/a", "/home/b", "/home/c"}
        assert shuffled == clean
        with tempfile.TemporaryDirectory() as temp_dir:
            store = make_store()
            store.save(Path(temp_dir), clean)
            saved = yaml.safe_load((Path(temp_dir) / MANIFEST_NAME).read_text())

            assert saved == ["/home/a", "/home/b", "/home/c"]
            assert store.load(Path(temp_dir)) == clean

    def test_search_ignores_case(self) -> None:
        """Test that a search returns only the matching path, ignoring case."""
        with tempfile.TemporaryDirectory() as temp_dir:
            store = make_store()
            store.save(
                Path(temp_dir),
                {"/home/user/.bashrc", "/home/user/.bashrc.orig", "/home/user/.profile"},
            )

            assert store.search(Path(temp_dir), ".bashrc$") == ["/home/user/.bashrc"]
            assert store.search(Path(temp_dir), ".BASHRC$") == ["/home/user/.bashrc"]

    def test_search_invalid_pattern(self) -> None:
        """Test that an invalid pattern raises PreconditionError."""
        with tempfile.TemporaryDirectory() as temp_dir:
            with pytest.raises(PreconditionError, match="Invalid search pattern"):
                make_store().search(Path(temp_dir), "[unclosed")
