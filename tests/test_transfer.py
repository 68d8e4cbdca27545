"""
Unit tests for per-item transfer execution.
"""

from pathlib import Path

import pytest

from src.sync.models import ItemRecord
from src.sync.transfer import TransferError, TransferExecutor

from conftest import FakeSource, PathSource


class TestTransferExecutor:
    """Tests for TransferExecutor.transfer."""

    def test_success_writes_artifact(self, collection_dir: Path):
        executor = TransferExecutor(FakeSource(), collection_dir)

        result = executor.transfer(ItemRecord("item-1", "2024-01-01T00:00:00Z"))

        assert result.ok
        assert result.destination == (collection_dir / "item-1.zip").resolve()
        assert result.destination.read_bytes() == b"data:item-1"
        assert [p.name for p in collection_dir.iterdir()] == ["item-1.zip"]

    def test_success_overwrites_existing_artifact(self, collection_dir: Path):
        (collection_dir / "item-1.zip").write_bytes(b"old version")
        executor = TransferExecutor(FakeSource(), collection_dir)

        executor.transfer(ItemRecord("item-1", "2024-01-01T00:00:00Z"))

        assert (collection_dir / "item-1.zip").read_bytes() == b"data:item-1"

    def test_failure_removes_partial_artifact(self, collection_dir: Path):
        executor = TransferExecutor(FakeSource(fail_ids=("item-2",)), collection_dir)

        result = executor.transfer(ItemRecord("item-2", "2024-01-01T00:00:00Z"))

        assert not result.ok
        assert isinstance(result.error, TransferError)
        assert result.error.identifier == "item-2"
        assert "connection reset" in str(result.error)
        assert list(collection_dir.iterdir()) == []

    def test_failure_removes_previous_artifact(self, collection_dir: Path):
        (collection_dir / "item-2.zip").write_bytes(b"old version")
        executor = TransferExecutor(FakeSource(fail_ids=("item-2",)), collection_dir)

        executor.transfer(ItemRecord("item-2", "2024-01-01T00:00:00Z"))

        assert not (collection_dir / "item-2.zip").exists()

    def test_interrupt_removes_partial_and_propagates(self, collection_dir: Path):
        executor = TransferExecutor(FakeSource(interrupt_on="item-1"), collection_dir)

        with pytest.raises(KeyboardInterrupt):
            executor.transfer(ItemRecord("item-1", "2024-01-01T00:00:00Z"))

        assert list(collection_dir.iterdir()) == []

    def test_nested_artifact_creates_directories(self, collection_dir: Path):
        executor = TransferExecutor(PathSource(), collection_dir)

        result = executor.transfer(ItemRecord("games/disks/lode_runner.dsk", "20240101000000"))

        assert result.ok
        assert (collection_dir / "games" / "disks" / "lode_runner.dsk").read_bytes() == (
            b"data:games/disks/lode_runner.dsk"
        )

    def test_path_escaping_directory_is_rejected(self, collection_dir: Path):
        source = PathSource()
        executor = TransferExecutor(source, collection_dir)

        result = executor.transfer(ItemRecord("../outside.bin", "20240101000000"))

        assert not result.ok
        assert "escapes" in str(result.error)
        assert source.retrieved == []
        assert not (collection_dir.parent / "outside.bin").exists()

    def test_reserved_name_is_rejected(self, collection_dir: Path):
        source = PathSource()
        executor = TransferExecutor(source, collection_dir, reserved_names={"fileList.txt"})

        result = executor.transfer(ItemRecord("fileList.txt", "20240101000000"))

        assert not result.ok
        assert "reserved" in str(result.error)
        assert source.retrieved == []

    def test_partial_is_hidden_unique_sibling(self, collection_dir: Path):
        source = FakeSource()
        executor = TransferExecutor(source, collection_dir)

        executor.transfer(ItemRecord("item-1", "2024-01-01T00:00:00Z"))

        partial = source.partials[0]
        assert partial.parent == collection_dir.resolve()
        assert partial.name.startswith(".item-1.zip.")
        assert partial.name.endswith(".part")
        assert not partial.exists()

    def test_partial_never_reuses_existing_artifact(self, collection_dir: Path):
        (collection_dir / "disk.dsk.part").write_bytes(b"remote file named .part")
        executor = TransferExecutor(PathSource(), collection_dir)

        result = executor.transfer(ItemRecord("disk.dsk", "20240101000000"))

        assert result.ok
        assert (collection_dir / "disk.dsk.part").read_bytes() == b"remote file named .part"
        assert (collection_dir / "disk.dsk").read_bytes() == b"data:disk.dsk"

    @pytest.mark.parametrize(
        "identifier,marker",
        [("a\nb.txt", "20240101000000"), ("tab\there.txt", "20240101000000"), ("ok.txt", "2024\t01")],
    )
    def test_unrecordable_item_is_rejected_before_download(self, collection_dir: Path, identifier, marker):
        source = PathSource()
        executor = TransferExecutor(source, collection_dir)

        result = executor.transfer(ItemRecord(identifier, marker))

        assert not result.ok
        assert "tabs or newlines" in str(result.error)
        assert source.retrieved == []
        assert list(collection_dir.iterdir()) == []

    def test_remove_deletes_artifact_and_empty_parents(self, collection_dir: Path):
        executor = TransferExecutor(PathSource(), collection_dir)
        executor.transfer(ItemRecord("games/arcade/choplifter.dsk", "20240101000000"))
        (collection_dir / "games" / "notes.txt").write_text("keep")

        removed = executor.remove(ItemRecord("games/arcade/choplifter.dsk", "20240101000000"))

        assert not removed.exists()
        assert not (collection_dir / "games" / "arcade").exists()
        assert (collection_dir / "games" / "notes.txt").exists()

    def test_remove_missing_artifact_is_not_an_error(self, collection_dir: Path):
        executor = TransferExecutor(FakeSource(), collection_dir)

        executor.remove(ItemRecord("item-1", "2024-01-01T10:00:00Z"))

        assert list(collection_dir.iterdir()) == []

    def test_remove_refuses_paths_outside_directory(self, collection_dir: Path):
        outside = collection_dir.parent / "outside.txt"
        outside.write_text("not ours")
        executor = TransferExecutor(PathSource(), collection_dir)

        with pytest.raises(TransferError):
            executor.remove(ItemRecord("../outside.txt", ""))

        assert outside.exists()
