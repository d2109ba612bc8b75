"""
Migration state tracker.

Holds the aggregate work item counts and the append-only metric time series
from which throughput, ETA and stalls are derived. Batch executor workers
publish status changes concurrently, so every mutation goes through a lock.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from typing import Any, Callable

from repo_migrator.constants import (
    METRIC_FAILED,
    METRIC_IN_PROGRESS,
    METRIC_MIGRATED,
    METRIC_PENDING,
)
from repo_migrator.core.checkpoint import MetricLogWriter
from repo_migrator.types import MetricSample, StatusSnapshot, WorkItem, WorkItemStatus
from repo_migrator.utils.logging import log_with_context


class MigrationStateTracker:
    """Aggregate counts plus a time-ordered metric log.

    ``rate`` and ``eta`` return None when there is not enough data rather than
    raising, so callers can render them as "unavailable".
    """

    def __init__(
        self,
        stalled_threshold_minutes: float = 60.0,
        clock: Callable[[], float] = time.time,
        metric_log: MetricLogWriter | None = None,
        tracked_metric: str = METRIC_MIGRATED,
    ) -> None:
        self.stalled_threshold_seconds = stalled_threshold_minutes * 60
        self.tracked_metric = tracked_metric
        self._clock = clock
        self._metric_log = metric_log
        self._lock = threading.RLock()
        self._samples: list[MetricSample] = []
        self._item_status: dict[str, WorkItemStatus] = {}
        self._snapshot = StatusSnapshot(timestamp=clock())
        self.started_at = clock()

    # -- Recording -----------------------------------------------------------

    def record_sample(
        self,
        name: str,
        value: float,
        tags: dict[str, str] | None = None,
        timestamp: float | None = None,
    ) -> MetricSample:
        """Append a sample to the metric log.

        Args:
            name: Metric name, e.g. ``migrated``.
            value: Observed value.
            tags: Optional labels stored with the sample.
            timestamp: Sample time; defaults to the tracker clock.

        Returns:
            The stored sample.
        """
        sample = MetricSample(
            timestamp=self._clock() if timestamp is None else timestamp,
            name=name,
            value=float(value),
            tags=dict(tags or {}),
        )
        with self._lock:
            self._samples.append(sample)
        if self._metric_log is not None:
            self._metric_log.append(sample)
        return sample

    def update_counts(
        self,
        pending: int,
        in_progress: int,
        migrated: int,
        failed: int,
        tags: dict[str, str] | None = None,
    ) -> StatusSnapshot:
        """Replace the aggregate snapshot and record one sample per count."""
        now = self._clock()
        snapshot = StatusSnapshot(
            pending=pending,
            in_progress=in_progress,
            migrated=migrated,
            failed=failed,
            timestamp=now,
        )
        with self._lock:
            self._snapshot = snapshot
            for name, value in (
                (METRIC_PENDING, pending),
                (METRIC_IN_PROGRESS, in_progress),
                (METRIC_MIGRATED, migrated),
                (METRIC_FAILED, failed),
            ):
                self.record_sample(name, value, tags, timestamp=now)
        return snapshot

    def register_items(self, items: list[WorkItem]) -> StatusSnapshot:
        """Seed per-item statuses at the start of a batch run."""
        with self._lock:
            for item in items:
                self._item_status[item.id] = item.status
            return self._publish_item_counts()

    def record_item_status(self, item: WorkItem) -> StatusSnapshot:
        """Publish one work item's status change and refresh the counts."""
        with self._lock:
            self._item_status[item.id] = item.status
            return self._publish_item_counts()

    def _publish_item_counts(self) -> StatusSnapshot:
        counts = Counter(self._item_status.values())
        return self.update_counts(
            pending=counts[WorkItemStatus.PENDING],
            in_progress=counts[WorkItemStatus.IN_PROGRESS],
            migrated=counts[WorkItemStatus.MIGRATED],
            failed=counts[WorkItemStatus.FAILED],
            tags={"source": "batch"},
        )

    # -- Queries -------------------------------------------------------------

    def samples(self, name: str | None = None) -> list[MetricSample]:
        with self._lock:
            if name is None:
                return list(self._samples)
            return [s for s in self._samples if s.name == name]

    def current_status(self) -> StatusSnapshot:
        with self._lock:
            return self._snapshot

    def rate(self, name: str = METRIC_MIGRATED) -> float | None:
        """Change per second between the earliest and latest sample of ``name``."""
        series = self.samples(name)
        if len(series) < 2:
            return None
        first, last = series[0], series[-1]
        elapsed = last.timestamp - first.timestamp
        if elapsed <= 0:
            return None
        return (last.value - first.value) / elapsed

    def eta(self) -> float | None:
        """Seconds until nothing remains pending, at the current migration rate."""
        current_rate = self.rate(METRIC_MIGRATED)
        if current_rate is None or current_rate <= 0:
            return None
        return self.current_status().remaining / current_rate

    def is_stalled(self, name: str | None = None) -> bool:
        """True when ``name`` has not changed for at least the stalled threshold.

        Only the trailing run of identical values counts: a change anywhere
        inside the threshold window resets it.
        """
        series = self.samples(name or self.tracked_metric)
        if len(series) < 2:
            return False

        latest = series[-1]
        run_start = latest
        for sample in reversed(series):
            if sample.value != latest.value:
                break
            run_start = sample

        unchanged_for = latest.timestamp - run_start.timestamp
        stalled = unchanged_for >= self.stalled_threshold_seconds
        if stalled:
            log_with_context(
                logging.WARNING,
                f"Metric '{latest.name}' unchanged at {latest.value:g} "
                f"for {unchanged_for / 60:.1f} minutes",
                metric=latest.name,
            )
        return stalled

    def is_complete(self) -> bool:
        snapshot = self.current_status()
        return snapshot.total > 0 and snapshot.remaining == 0

    def snapshot(self) -> dict[str, Any]:
        """Full state for snapshot files and run summaries."""
        status = self.current_status()
        return {
            "timestamp": status.timestamp,
            "started_at": self.started_at,
            "counts": {
                "pending": status.pending,
                "in_progress": status.in_progress,
                "migrated": status.migrated,
                "failed": status.failed,
                "total": status.total,
            },
            "percent_complete": round(status.percent_complete, 2),
            "rate_per_second": self.rate(),
            "eta_seconds": self.eta(),
            "samples_recorded": len(self.samples()),
        }
