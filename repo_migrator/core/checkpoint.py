"""Persistence for resumable runs, status snapshots and the metric log.

Everything here is write-mostly: the orchestration core never reads its own
snapshots back, and only ``--resume`` reads the checkpoint.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from repo_migrator.types import MetricSample, WorkItem, WorkItemStatus
from repo_migrator.utils.logging import log_with_context

CHECKPOINT_SCHEMA_VERSION = 1


@dataclass
class CheckpointData:
    """Serializable record of which work items have finished."""

    schema_version: int = CHECKPOINT_SCHEMA_VERSION
    completed_items: dict[str, str] = field(
        default_factory=dict
    )  # item id -> completion time
    failed_items: dict[str, str] = field(default_factory=dict)  # item id -> error
    started_at: str | None = None
    last_updated: str | None = None

    def record(self, item: WorkItem) -> None:
        """Fold the item's current status into the checkpoint."""
        if item.status == WorkItemStatus.MIGRATED:
            self.completed_items[item.id] = _now_iso()
            self.failed_items.pop(item.id, None)
        elif item.status == WorkItemStatus.FAILED:
            self.failed_items[item.id] = item.last_error or "unknown error"

    def apply(self, items: list[WorkItem]) -> int:
        """Mark items completed in a previous run as migrated.

        Returns:
            Number of items restored to the migrated state.
        """
        restored = 0
        for item in items:
            if item.id in self.completed_items:
                item.status = WorkItemStatus.MIGRATED
                restored += 1
        return restored


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def load_checkpoint(path: Path) -> CheckpointData | None:
    """Load a checkpoint from disk, returning None if absent or corrupt."""
    if not path.exists():
        return None
    try:
        raw = json.loads(path.read_text())
        if not isinstance(raw, dict):
            log_with_context(
                logging.WARNING,
                f"Checkpoint file {path} has invalid format, ignoring",
            )
            return None
        version = raw.get("schema_version", 0)
        if version != CHECKPOINT_SCHEMA_VERSION:
            log_with_context(
                logging.WARNING,
                f"Checkpoint schema version {version} != {CHECKPOINT_SCHEMA_VERSION}, ignoring",
            )
            return None
        return CheckpointData(
            schema_version=version,
            completed_items=raw.get("completed_items", {}),
            failed_items=raw.get("failed_items", {}),
            started_at=raw.get("started_at"),
            last_updated=raw.get("last_updated"),
        )
    except (json.JSONDecodeError, OSError) as e:
        log_with_context(logging.WARNING, f"Failed to read checkpoint {path}: {e}")
        return None


def save_checkpoint(path: Path, data: CheckpointData) -> None:
    """Atomically save checkpoint to disk (write .tmp + rename)."""
    data.last_updated = _now_iso()
    if data.started_at is None:
        data.started_at = data.last_updated
    write_json_atomic(path, asdict(data))


def clear_checkpoint(path: Path) -> None:
    """Remove the checkpoint file after a fully successful run."""
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        log_with_context(logging.WARNING, f"Failed to remove checkpoint {path}: {e}")


def write_json_atomic(path: Path, payload: dict[str, Any]) -> None:
    """Write ``payload`` as JSON through a temporary file and a rename."""
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_text(json.dumps(payload, indent=2, default=str) + "\n")
        tmp.replace(path)
    except OSError as e:
        log_with_context(logging.ERROR, f"Failed to write {path}: {e}")


def write_summary(path: Path, summary: dict[str, Any]) -> Path:
    """Write a run summary artifact as YAML and return its path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(summary, f, default_flow_style=False, sort_keys=False)
    log_with_context(logging.INFO, f"Run summary written to {path}")
    return path


class MetricLogWriter:
    """Append-only JSON-lines log of metric samples."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def append(self, sample: MetricSample) -> None:
        line = json.dumps(sample.to_dict(), sort_keys=True)
        with self._lock:
            try:
                with open(self.path, "a") as f:
                    f.write(line + "\n")
            except OSError as e:
                log_with_context(
                    logging.WARNING, f"Failed to append to metric log {self.path}: {e}"
                )
