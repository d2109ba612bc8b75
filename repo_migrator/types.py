"""Shared type definitions for the repository migration orchestrator.

Provides the dataclasses and enums flowing between the batch executor, the
state tracker, the health monitor and the alert dispatcher.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from repo_migrator.constants import EXIT_ERROR, EXIT_OK, EXIT_WARNING
from repo_migrator.exceptions import InvalidTransitionError

# ---------------------------------------------------------------------------
# Work items
# ---------------------------------------------------------------------------


class WorkItemStatus(str, Enum):
    """Lifecycle state of a single repository migration."""

    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    MIGRATED = "Migrated"
    FAILED = "Failed"


_ALLOWED_TRANSITIONS: dict[WorkItemStatus, set[WorkItemStatus]] = {
    WorkItemStatus.PENDING: {WorkItemStatus.IN_PROGRESS},
    WorkItemStatus.IN_PROGRESS: {
        WorkItemStatus.MIGRATED,
        WorkItemStatus.PENDING,
        WorkItemStatus.FAILED,
    },
    WorkItemStatus.MIGRATED: set(),
    # A new run may re-queue items that exhausted their retries last time
    WorkItemStatus.FAILED: {WorkItemStatus.PENDING},
}


@dataclass
class WorkItem:
    """One migratable repository tracked through its lifecycle."""

    id: str
    source_ref: str
    target_ref: str
    status: WorkItemStatus = WorkItemStatus.PENDING
    last_error: str | None = None
    attempt_count: int = 0

    def transition(self, new_status: WorkItemStatus) -> None:
        """Move the item to ``new_status``.

        Raises:
            InvalidTransitionError: If the lifecycle does not allow the move.
        """
        if new_status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Work item {self.id} cannot move from {self.status.value} "
                f"to {new_status.value}"
            )
        self.status = new_status

    @property
    def is_terminal(self) -> bool:
        return self.status in (WorkItemStatus.MIGRATED, WorkItemStatus.FAILED)


@dataclass
class ItemOutcome:
    """Result of one migration attempt for a work item."""

    success: bool
    reason: str | None = None
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0

    @classmethod
    def failure(cls, reason: str, **kwargs: Any) -> ItemOutcome:
        return cls(success=False, reason=reason, **kwargs)


# ---------------------------------------------------------------------------
# Batch run results
# ---------------------------------------------------------------------------


class RunClassification(str, Enum):
    """Overall outcome of a batch run, derived from its success rate."""

    OK = "OK"
    WARNING = "Warning"
    ERROR = "Error"

    @property
    def exit_code(self) -> int:
        return {
            RunClassification.OK: EXIT_OK,
            RunClassification.WARNING: EXIT_WARNING,
            RunClassification.ERROR: EXIT_ERROR,
        }[self]


@dataclass
class BatchReport:
    """Final report produced by the batch executor."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0  # already migrated before this run
    chunks: int = 0
    retry_rounds: int = 0
    attempts: int = 0
    failed_items: dict[str, str] = field(default_factory=dict)
    stopped: bool = False
    duration: float = 0.0

    @property
    def success_rate(self) -> float:
        """Percentage of successful items; 100.0 when nothing was attempted."""
        if self.total == 0:
            return 100.0
        return (self.succeeded / self.total) * 100.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "success_rate": round(self.success_rate, 2),
            "chunks": self.chunks,
            "retry_rounds": self.retry_rounds,
            "attempts": self.attempts,
            "failed_items": dict(self.failed_items),
            "stopped": self.stopped,
            "duration_seconds": round(self.duration, 2),
        }


# ---------------------------------------------------------------------------
# Metrics and status
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MetricSample:
    """A single point in the append-only metric time series."""

    timestamp: float
    name: str
    value: float
    tags: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "name": self.name,
            "value": self.value,
            "tags": dict(self.tags),
        }


@dataclass(frozen=True)
class StatusSnapshot:
    """Aggregate work item counts at a point in time."""

    pending: int = 0
    in_progress: int = 0
    migrated: int = 0
    failed: int = 0
    timestamp: float = field(default_factory=time.time)

    @property
    def total(self) -> int:
        return self.pending + self.in_progress + self.migrated + self.failed

    @property
    def remaining(self) -> int:
        return self.pending + self.in_progress

    @property
    def percent_complete(self) -> float:
        if self.total == 0:
            return 0.0
        return ((self.migrated + self.failed) / self.total) * 100.0


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthState(str, Enum):
    HEALTHY = "Healthy"
    DEGRADED = "Degraded"
    UNHEALTHY = "Unhealthy"


@dataclass
class HealthStatus:
    """Latest probe result for one dependency."""

    dependency: str
    state: HealthState
    last_checked_at: datetime
    latency_ms: float | None = None
    error: str | None = None
    consecutive_failures: int = 0


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------


class Severity(str, Enum):
    """Alert severity levels, most severe first."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Alert:
    """An operator notification. Immutable once created."""

    type: str
    severity: Severity
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)

    @property
    def title(self) -> str:
        return f"[{self.severity.value}] {self.type}"

    @property
    def dedup_key(self) -> tuple[str, str]:
        return (self.type, self.message)


@dataclass
class DeliveryResult:
    """Outcome of delivering an alert to one channel."""

    channel: str
    success: bool
    error: str | None = None


class DispatchStatus(str, Enum):
    DELIVERED = "delivered"
    FILTERED = "filtered"
    QUIET_HOURS = "quiet_hours"
    DUPLICATE = "duplicate"
    FAILED = "failed"


@dataclass
class DispatchResult:
    """Outcome of :meth:`AlertDispatcher.send`."""

    status: DispatchStatus
    deliveries: list[DeliveryResult] = field(default_factory=list)

    @property
    def delivered(self) -> bool:
        return self.status == DispatchStatus.DELIVERED
