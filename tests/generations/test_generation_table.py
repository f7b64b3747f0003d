"""Tests for generation naming, rotation and pruning."""

import logging
import tempfile
from datetime import datetime
from pathlib import Path
from unittest.mock import Mock

import pytest

from rubac.config import ConfigStore
from rubac.exceptions import NotFoundError
from rubac.generations import GenerationTable, client_directory


def make_table(temp_dir: str, ninc: int = 2) -> GenerationTable:
    """Create a table for profile rubac with a fixed clock."""
    logger = Mock(spec=logging.Logger)
    store = ConfigStore(Path(temp_dir) / "etc", logger)
    store.set_global("ninc", ninc)
    return GenerationTable(store, "rubac", logger, clock=lambda: datetime(2024, 1, 3, 4, 5, 6))


def fill(table: GenerationTable, client_dir: Path, names: list[str]) -> None:
    """Put names into consecutive slots and create their directories."""
    for slot, name in enumerate(names):
        table.config_store.set_incremental("esme", slot, name)
        if name:
            (client_dir / name).mkdir(parents=True, exist_ok=True)


class TestGenerationNames:
    """Test cases for generation names."""

    def test_client_directory(self) -> None:
        """Test the destination layout."""
        assert client_directory(Path("/mnt/b"), "rubac", "esme") == Path("/mnt/b/rubac/esme")

    def test_new_generation_name(self) -> None:
        """Test the date based generation name."""
        with tempfile.TemporaryDirectory() as temp_dir:
            table = make_table(temp_dir)

            assert table.new_generation_name(Path(temp_dir)) == "rubac.2024-01-03"

    def test_second_run_same_day_gets_time(self) -> None:
        """Test that an existing directory of the same day is not reused."""
        with tempfile.TemporaryDirectory() as temp_dir:
            table = make_table(temp_dir)
            (Path(temp_dir) / "rubac.2024-01-03").mkdir()

            assert table.new_generation_name(Path(temp_dir)) == "rubac.2024-01-03_04-05-06"

    def test_snapshot_name(self) -> None:
        """Test snapshot naming and detection."""
        with tempfile.TemporaryDirectory() as temp_dir:
            table = make_table(temp_dir)

            name = table.snapshot_name("before-upgrade")

            assert name == "rubac.snapshot.before-upgrade"
            assert table.is_snapshot(name)
            assert not table.is_snapshot("rubac.2024-01-03")


class TestRotation:
    """Test cases for rotate."""

    def test_rotate_shifts_slots(self) -> None:
        """Test that every generation moves up one slot."""
        with tempfile.TemporaryDirectory() as temp_dir:
            table = make_table(temp_dir)
            client_dir = Path(temp_dir) / "esme"
            fill(table, client_dir, ["b", "a"])

            expire = table.rotate("esme", client_dir)

            assert expire is None
            assert table.name_at("esme", 2) == "a"
            assert table.name_at("esme", 1) == "b"
            assert table.name_at("esme", 0) == "b"

    def test_rotate_expires_oldest(self) -> None:
        """Test that a full table expires the generation in the last slot."""
        with tempfile.TemporaryDirectory() as temp_dir:
            table = make_table(temp_dir)
            client_dir = Path(temp_dir) / "esme"
            fill(table, client_dir, ["c", "b", "a"])

            expire = table.rotate("esme", client_dir)

            assert expire == client_dir / "a"
            assert table.name_at("esme", 2) == "b"
            assert table.name_at("esme", 1) == "c"

    def test_rotate_clears_slots_of_missing_generation(self) -> None:
        """Test that a generation missing on disk clears its slot and the next one."""
        with tempfile.TemporaryDirectory() as temp_dir:
            table = make_table(temp_dir, ninc=3)
            client_dir = Path(temp_dir) / "esme"
            fill(table, client_dir, ["d", "c", "b"])
            (client_dir / "c").rmdir()

            expire = table.rotate("esme", client_dir)

            assert expire is None
            assert table.name_at("esme", 3) == "b"
            assert table.name_at("esme", 2) == ""
            assert table.name_at("esme", 1) == "d"
            table.logger.error.assert_called_once()

    def test_rotate_with_zero_depth(self) -> None:
        """Test that a table without retention never rotates."""
        with tempfile.TemporaryDirectory() as temp_dir:
            table = make_table(temp_dir, ninc=0)
            client_dir = Path(temp_dir) / "esme"
            fill(table, client_dir, ["a"])

            assert table.rotate("esme", client_dir) is None
            assert table.name_at("esme", 0) == "a"


class TestHistory:
    """Test cases for history."""

    def test_history_stops_at_first_empty_slot(self) -> None:
        """Test that slots after a gap are not listed."""
        with tempfile.TemporaryDirectory() as temp_dir:
            table = make_table(temp_dir)
            client_dir = Path(temp_dir) / "esme"
            fill(table, client_dir, ["c", "", "a"])

            assert table.history("esme", client_dir) == ["c"]

    def test_history_lists_snapshots_last(self) -> None:
        """Test that snapshots follow the numbered generations."""
        with tempfile.TemporaryDirectory() as temp_dir:
            table = make_table(temp_dir)
            client_dir = Path(temp_dir) / "esme"
            fill(table, client_dir, ["b", "a"])
            (client_dir / "rubac.snapshot.z").mkdir()
            (client_dir / "rubac.snapshot.m").mkdir()

            assert table.history("esme", client_dir) == [
                "b",
                "a",
                "rubac.snapshot.m",
                "rubac.snapshot.z",
            ]

    def test_history_index(self) -> None:
        """Test restricting the history to one slot."""
        with tempfile.TemporaryDirectory() as temp_dir:
            table = make_table(temp_dir)
            client_dir = Path(temp_dir) / "esme"
            fill(table, client_dir, ["b", "a"])
            (client_dir / "rubac.snapshot.z").mkdir()

            assert table.history("esme", client_dir, 1) == ["a"]


class TestPrune:
    """Test cases for prune."""

    def test_prune_closes_gap(self) -> None:
        """Test that later generations move down after a prune."""
        with tempfile.TemporaryDirectory() as temp_dir:
            table = make_table(temp_dir)
            client_dir = Path(temp_dir) / "esme"
            fill(table, client_dir, ["c", "b", "a"])

            assert table.prune("esme", "b") == 1
            assert table.name_at("esme", 0) == "c"
            assert table.name_at("esme", 1) == "a"
            assert table.name_at("esme", 2) == ""

    def test_prune_newest(self) -> None:
        """Test pruning slot 0."""
        with tempfile.TemporaryDirectory() as temp_dir:
            table = make_table(temp_dir)
            client_dir = Path(temp_dir) / "esme"
            fill(table, client_dir, ["b", "a"])

            assert table.prune("esme", "b") == 0
            assert table.name_at("esme", 0) == "a"
            assert table.name_at("esme", 1) == ""

    def test_prune_snapshot_leaves_table(self) -> None:
        """Test that pruning a snapshot does not touch the slots."""
        with tempfile.TemporaryDirectory() as temp_dir:
            table = make_table(temp_dir)
            client_dir = Path(temp_dir) / "esme"
            fill(table, client_dir, ["a"])

            assert table.prune("esme", "rubac.snapshot.x") is None
            assert table.name_at("esme", 0) == "a"

    def test_prune_unknown_generation(self) -> None:
        """Test that pruning an unknown generation raises NotFoundError."""
        with tempfile.TemporaryDirectory() as temp_dir:
            table = make_table(temp_dir)

            with pytest.raises(NotFoundError):
                table.prune("esme", "rubac.1999-01-01")
