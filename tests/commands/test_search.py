"""Tests for the search command."""

import logging
import os
import stat
import tempfile
from pathlib import Path
from unittest.mock import Mock

from rubac.commands import CommandContext, GenerationSearch, file_type, md5sum
from rubac.config import ConfigStore
from rubac.generations import GenerationTable
from rubac.manifest import ManifestStore


def make_ctx(temp_dir: str, names: list[str], verbose: bool = False) -> CommandContext:
    """Create a context whose client esme holds names in consecutive slots."""
    logger = Mock(spec=logging.Logger)
    root = Path(temp_dir)
    store = ConfigStore(root / "etc", logger)
    ctx = CommandContext(
        config_store=store,
        table=GenerationTable(store, "rubac", logger),
        manifest_store=ManifestStore(logger),
        logger=logger,
        dest=root / "dest",
        verbose=verbose,
    )
    for slot, name in enumerate(names):
        store.set_incremental("esme", slot, name)
        ctx.generation_dir("esme", name).mkdir(parents=True)
    return ctx


def add_file(ctx: CommandContext, generation: str, path: str, content: str) -> Path:
    """Create a backed up file and record it in the generation's manifest."""
    basedir = ctx.generation_dir("esme", generation)
    location = basedir / path.lstrip("/")
    location.parent.mkdir(parents=True, exist_ok=True)
    location.write_text(content)
    paths = ctx.manifest_store.load(basedir)
    paths.add(path)
    ctx.manifest_store.save(basedir, paths)
    return location


class TestGenerationSearch:
    """Test cases for GenerationSearch."""

    def test_search_matches_exact_path(self) -> None:
        """Test that .bashrc$ finds only the .bashrc file."""
        with tempfile.TemporaryDirectory() as temp_dir:
            ctx = make_ctx(temp_dir, ["rubac.2024-01-01"])
            add_file(ctx, "rubac.2024-01-01", "/home/user/.bashrc", "alias ll='ls -l'\n")
            add_file(ctx, "rubac.2024-01-01", "/home/user/.bashrc.orig", "old\n")

            hits = GenerationSearch(ctx).search("esme", [".BASHRC$"])

            assert [hit.path for hit in hits] == ["/home/user/.bashrc"]
            assert hits[0].generation == "rubac.2024-01-01"

    def test_hardlinked_copies_reported_once(self) -> None:
        """Test that the same inode in two generations is one hit."""
        with tempfile.TemporaryDirectory() as temp_dir:
            ctx = make_ctx(temp_dir, ["rubac.2024-01-02", "rubac.2024-01-01"])
            original = add_file(ctx, "rubac.2024-01-01", "/etc/hosts", "127.0.0.1 localhost\n")
            newer = ctx.generation_dir("esme", "rubac.2024-01-02")
            (newer / "etc").mkdir()
            os.link(original, newer / "etc" / "hosts")
            ctx.manifest_store.save(newer, {"/etc/hosts"})

            hits = GenerationSearch(ctx).search("esme", ["hosts"])

            assert len(hits) == 1
            assert hits[0].generation == "rubac.2024-01-02"

    def test_changed_file_reported_per_generation(self) -> None:
        """Test that different contents in two generations are two hits."""
        with tempfile.TemporaryDirectory() as temp_dir:
            ctx = make_ctx(temp_dir, ["rubac.2024-01-02", "rubac.2024-01-01"])
            add_file(ctx, "rubac.2024-01-01", "/etc/hosts", "old\n")
            add_file(ctx, "rubac.2024-01-02", "/etc/hosts", "new\n")

            hits = GenerationSearch(ctx).search("esme", ["hosts"])

            assert [hit.generation for hit in hits] == ["rubac.2024-01-02", "rubac.2024-01-01"]

    def test_selected_generation_only(self) -> None:
        """Test that a selection restricts the search."""
        with tempfile.TemporaryDirectory() as temp_dir:
            ctx = make_ctx(temp_dir, ["rubac.2024-01-02", "rubac.2024-01-01"])
            add_file(ctx, "rubac.2024-01-01", "/etc/hosts", "old\n")
            add_file(ctx, "rubac.2024-01-02", "/etc/hosts", "new\n")

            hits = GenerationSearch(ctx).search("esme", ["hosts"], "rubac.2024-01-01")

            assert [hit.generation for hit in hits] == ["rubac.2024-01-01"]

    def test_missing_manifest_and_file_are_skipped(self) -> None:
        """Test that gaps are logged and the search goes on."""
        with tempfile.TemporaryDirectory() as temp_dir:
            ctx = make_ctx(temp_dir, ["rubac.2024-01-02", "rubac.2024-01-01"])
            gone = add_file(ctx, "rubac.2024-01-01", "/etc/hosts", "old\n")
            gone.unlink()

            hits = GenerationSearch(ctx).search("esme", ["hosts"])

            assert hits == []
            assert ctx.logger.error.call_count == 2

    def test_verbose_reports_details(self) -> None:
        """Test that verbose searches report file details."""
        with tempfile.TemporaryDirectory() as temp_dir:
            ctx = make_ctx(temp_dir, ["rubac.2024-01-01"], verbose=True)
            location = add_file(ctx, "rubac.2024-01-01", "/etc/motd", "hello\n")

            GenerationSearch(ctx).search("esme", ["motd"])

            ctx.logger.info.assert_any_call(f"{'type':>8}=file")
            ctx.logger.info.assert_any_call(f"{'md5sum':>8}={md5sum(location)}")


class TestFileHelpers:
    """Test cases for file_type and md5sum."""

    def test_file_type(self) -> None:
        """Test readable file types."""
        assert file_type(stat.S_IFREG | 0o644) == "file"
        assert file_type(stat.S_IFDIR | 0o755) == "directory"
        assert file_type(stat.S_IFLNK | 0o777) == "link"

    def test_md5sum(self) -> None:
        """Test the md5 digest of a file."""
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "f"
            path.write_text("hello\n")

            assert md5sum(path) == "b1946ac92492d2347c6235b4d2611184"
