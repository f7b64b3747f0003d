"""Tests for the history command."""

import logging
import tempfile
from pathlib import Path
from unittest.mock import Mock, call

import pytest

from rubac.commands import CommandContext, show_history
from rubac.config import ConfigStore
from rubac.exceptions import NotFoundError
from rubac.generations import GenerationTable
from rubac.manifest import ManifestStore


def make_ctx(temp_dir: str, names: list[str]) -> CommandContext:
    """Create a context whose client esme holds names in consecutive slots."""
    logger = Mock(spec=logging.Logger)
    root = Path(temp_dir)
    store = ConfigStore(root / "etc", logger)
    store.set_global("ninc", 3)
    ctx = CommandContext(
        config_store=store,
        table=GenerationTable(store, "rubac", logger),
        manifest_store=ManifestStore(logger),
        logger=logger,
        dest=root / "dest",
    )
    for slot, name in enumerate(names):
        store.set_incremental("esme", slot, name)
        ctx.generation_dir("esme", name).mkdir(parents=True)
    return ctx


class TestShowHistory:
    """Test cases for show_history."""

    def test_lists_generations(self) -> None:
        """Test the numbered listing of a client's history."""
        with tempfile.TemporaryDirectory() as temp_dir:
            ctx = make_ctx(temp_dir, ["rubac.2024-01-02", "rubac.2024-01-01"])

            entries = show_history(ctx, "esme")

            assert entries == ["rubac.2024-01-02", "rubac.2024-01-01"]
            ctx.logger.info.assert_has_calls(
                [
                    call("esme:0: rubac.2024-01-02"),
                    call("esme:1: rubac.2024-01-01"),
                ],
            )

    def test_no_history(self) -> None:
        """Test a client without generations."""
        with tempfile.TemporaryDirectory() as temp_dir:
            ctx = make_ctx(temp_dir, [])

            assert show_history(ctx, "esme") == []
            ctx.logger.info.assert_called_once_with("No history for esme")

    def test_index_prints_manifest(self) -> None:
        """Test that an index prints the manifest of that generation."""
        with tempfile.TemporaryDirectory() as temp_dir:
            ctx = make_ctx(temp_dir, ["rubac.2024-01-02", "rubac.2024-01-01"])
            ctx.manifest_store.save(ctx.generation_dir("esme", "rubac.2024-01-01"), {"/etc/b", "/etc/a"})

            show_history(ctx, "esme", 1)

            ctx.logger.info.assert_has_calls(
                [call("esme:1: rubac.2024-01-01"), call("/etc/a"), call("/etc/b")],
            )

    def test_index_without_manifest(self) -> None:
        """Test that a missing manifest raises NotFoundError."""
        with tempfile.TemporaryDirectory() as temp_dir:
            ctx = make_ctx(temp_dir, ["rubac.2024-01-02"])

            with pytest.raises(NotFoundError, match="not found"):
                show_history(ctx, "esme", 0)
