"""Unit tests for checkpoint persistence."""

from __future__ import annotations

import json
from pathlib import Path

import yaml

from repo_migrator.core.checkpoint import (
    CHECKPOINT_SCHEMA_VERSION,
    CheckpointData,
    clear_checkpoint,
    load_checkpoint,
    save_checkpoint,
    write_json_atomic,
    write_summary,
)
from repo_migrator.types import WorkItem, WorkItemStatus


def _item(item_id: str, status: WorkItemStatus, error: str | None = None) -> WorkItem:
    return WorkItem(
        id=item_id,
        source_ref=f"org/proj/{item_id}",
        target_ref=f"gh/{item_id}",
        status=status,
        last_error=error,
    )


class TestCheckpointData:
    def test_record_migrated_clears_failure(self) -> None:
        data = CheckpointData(failed_items={"api": "timeout"})
        data.record(_item("api", WorkItemStatus.MIGRATED))

        assert "api" in data.completed_items
        assert data.failed_items == {}

    def test_record_failed(self) -> None:
        data = CheckpointData()
        data.record(_item("web", WorkItemStatus.FAILED, "exit code 1"))

        assert data.failed_items == {"web": "exit code 1"}

    def test_record_pending_is_ignored(self) -> None:
        data = CheckpointData()
        data.record(_item("web", WorkItemStatus.PENDING))

        assert data.completed_items == {} and data.failed_items == {}

    def test_apply_restores_completed_items(self) -> None:
        data = CheckpointData(completed_items={"api": "2026-01-01T00:00:00+00:00"})
        items = [_item("api", WorkItemStatus.PENDING), _item("web", WorkItemStatus.PENDING)]

        assert data.apply(items) == 1
        assert items[0].status == WorkItemStatus.MIGRATED
        assert items[1].status == WorkItemStatus.PENDING


class TestLoadSave:
    def test_round_trip(self, tmp_path: Path) -> None:
        path = tmp_path / ".migration_checkpoint.json"
        data = CheckpointData()
        data.record(_item("api", WorkItemStatus.MIGRATED))

        save_checkpoint(path, data)
        loaded = load_checkpoint(path)

        assert loaded is not None
        assert set(loaded.completed_items) == {"api"}
        assert loaded.started_at is not None
        assert not path.with_suffix(".json.tmp").exists()

    def test_missing_file(self, tmp_path: Path) -> None:
        assert load_checkpoint(tmp_path / "missing.json") is None

    def test_corrupt_file_is_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "checkpoint.json"
        path.write_text("{not json")

        assert load_checkpoint(path) is None

    def test_wrong_schema_version_is_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "checkpoint.json"
        path.write_text(json.dumps({"schema_version": CHECKPOINT_SCHEMA_VERSION + 1}))

        assert load_checkpoint(path) is None

    def test_non_mapping_is_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "checkpoint.json"
        path.write_text("[1, 2]")

        assert load_checkpoint(path) is None

    def test_clear(self, tmp_path: Path) -> None:
        path = tmp_path / "checkpoint.json"
        save_checkpoint(path, CheckpointData())

        clear_checkpoint(path)
        clear_checkpoint(path)

        assert not path.exists()


class TestArtifacts:
    def test_write_json_atomic_creates_parents(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "status_snapshot.json"

        write_json_atomic(path, {"counts": {"migrated": 3}})

        assert json.loads(path.read_text()) == {"counts": {"migrated": 3}}

    def test_write_summary(self, tmp_path: Path) -> None:
        path = write_summary(tmp_path / "run_summary.yaml", {"cycles": 2, "stop_reason": "complete"})

        assert yaml.safe_load(path.read_text()) == {"cycles": 2, "stop_reason": "complete"}
