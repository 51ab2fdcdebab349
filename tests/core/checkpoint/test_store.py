# tests/core/checkpoint/test_store.py
"""Tests for CheckpointMetadataStore."""

import shutil
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from dockercr.contracts import (
    CheckpointCorruptionError,
    CheckpointRecord,
    IncompatibleCheckpointError,
    MissingMetadataError,
    Strategy,
    TargetKind,
)
from dockercr.core.checkpoint import METADATA_FILENAME, CheckpointMetadataStore

T0 = datetime(2026, 10, 19, 10, 15, tzinfo=UTC)


class TestCheckpointMetadataStore:
    """Directory allocation and record persistence."""

    @pytest.fixture
    def store(self) -> CheckpointMetadataStore:
        return CheckpointMetadataStore()

    def _write(self, store: CheckpointMetadataStore, root: Path, created_at: datetime, pid: int = 77) -> CheckpointRecord:
        checkpoint_id, directory = store.allocate(root, created_at)
        record = CheckpointRecord(
            checkpoint_id=checkpoint_id,
            target_kind=TargetKind.CONTAINER,
            pid=pid,
            strategy=Strategy.DIRECT_CONTAINER_AWARE,
            created_at=created_at,
            checkpoint_dir=directory,
            container_id="abc",
            container_name="web",
            image="nginx:1.27",
        )
        store.write(record)
        return record

    def test_allocate_creates_unique_directories(self, store: CheckpointMetadataStore, tmp_path: Path) -> None:
        first_id, first_dir = store.allocate(tmp_path / "root", T0)
        second_id, second_dir = store.allocate(tmp_path / "root", T0)

        assert first_id != second_id
        assert first_dir.is_dir()
        assert second_dir.is_dir()
        assert first_id.startswith("cp-20261019T101500000000-")

    def test_write_then_read(self, store: CheckpointMetadataStore, tmp_path: Path) -> None:
        record = self._write(store, tmp_path, T0)

        assert store.read(record.checkpoint_dir) == record

    def test_records_are_immutable(self, store: CheckpointMetadataStore, tmp_path: Path) -> None:
        record = self._write(store, tmp_path, T0)

        with pytest.raises(FileExistsError):
            store.write(record)

    def test_two_checkpoints_of_one_target_both_valid(self, store: CheckpointMetadataStore, tmp_path: Path) -> None:
        """Checkpointing the same target into the same root twice keeps both."""
        first = self._write(store, tmp_path, T0, pid=77)
        second = self._write(store, tmp_path, T0 + timedelta(minutes=5), pid=78)

        records = store.list_records(tmp_path)

        assert records == [first, second]
        assert store.read(first.checkpoint_dir).pid == 77
        assert store.read(second.checkpoint_dir).pid == 78

    def test_load_root_returns_latest(self, store: CheckpointMetadataStore, tmp_path: Path) -> None:
        self._write(store, tmp_path, T0)
        latest = self._write(store, tmp_path, T0 + timedelta(hours=1))

        assert store.load(tmp_path) == latest

    def test_load_checkpoint_directory_directly(self, store: CheckpointMetadataStore, tmp_path: Path) -> None:
        first = self._write(store, tmp_path, T0)
        self._write(store, tmp_path, T0 + timedelta(hours=1))

        assert store.load(first.checkpoint_dir) == first

    def test_failed_capture_directories_ignored(self, store: CheckpointMetadataStore, tmp_path: Path) -> None:
        record = self._write(store, tmp_path, T0)
        store.allocate(tmp_path, T0 + timedelta(hours=1))  # no record written

        assert store.list_records(tmp_path) == [record]
        assert store.load(tmp_path) == record

    def test_missing_metadata(self, store: CheckpointMetadataStore, tmp_path: Path) -> None:
        with pytest.raises(MissingMetadataError):
            store.load(tmp_path)

    def test_missing_directory(self, store: CheckpointMetadataStore, tmp_path: Path) -> None:
        with pytest.raises(MissingMetadataError, match="not found"):
            store.load(tmp_path / "nowhere")

    @pytest.mark.parametrize("legacy_name", ["container.meta", "docker-checkpoint.info"])
    def test_legacy_metadata_incompatible(self, store: CheckpointMetadataStore, tmp_path: Path, legacy_name: str) -> None:
        (tmp_path / legacy_name).write_text("CONTAINER_ID=abc\nIMAGE=nginx\nPID=4312\n")

        with pytest.raises(IncompatibleCheckpointError):
            store.load(tmp_path)

    def test_unversioned_container_info_incompatible(self, store: CheckpointMetadataStore, tmp_path: Path) -> None:
        (tmp_path / METADATA_FILENAME).write_text("CONTAINER_ID=abc\nCONTAINER_NAME=web\nIMAGE=nginx\nPID=4312\n")

        with pytest.raises(IncompatibleCheckpointError):
            store.load(tmp_path)

    def test_moved_directory_points_at_new_location(self, store: CheckpointMetadataStore, tmp_path: Path) -> None:
        record = self._write(store, tmp_path / "old", T0)
        moved = tmp_path / "new"
        shutil.move(str(record.checkpoint_dir), moved)

        loaded = store.read(moved)

        assert loaded.checkpoint_dir == moved.resolve()
        assert loaded.checkpoint_id == record.checkpoint_id

    def test_corrupt_sibling_skipped_when_loading_root(self, store: CheckpointMetadataStore, tmp_path: Path) -> None:
        older = self._write(store, tmp_path, T0)
        latest = self._write(store, tmp_path, T0 + timedelta(hours=1))
        (older.checkpoint_dir / METADATA_FILENAME).write_text("FORMAT_VERSION=1\ngarbage\n")

        assert store.list_records(tmp_path) == [latest]
        assert store.load(tmp_path) == latest

    def test_newer_format_sibling_skipped(self, store: CheckpointMetadataStore, tmp_path: Path) -> None:
        older = self._write(store, tmp_path, T0)
        newer = self._write(store, tmp_path, T0 + timedelta(hours=1))
        (newer.checkpoint_dir / METADATA_FILENAME).write_text("FORMAT_VERSION=99\n")

        assert store.load(tmp_path) == older

    def test_corrupt_record_named_directly_still_raises(self, store: CheckpointMetadataStore, tmp_path: Path) -> None:
        record = self._write(store, tmp_path, T0)
        (record.checkpoint_dir / METADATA_FILENAME).write_text("FORMAT_VERSION=1\ngarbage\n")

        with pytest.raises(CheckpointCorruptionError, match="garbage"):
            store.load(record.checkpoint_dir)
