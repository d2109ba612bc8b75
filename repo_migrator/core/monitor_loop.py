"""
Orchestration loop.

A timer-driven cycle: check dependency health, read the migration status,
raise alerts, then sleep until the next cycle. The loop is single-threaded;
only :meth:`MonitoringLoop.request_stop` may be called from another thread.

States::

    IDLE -> CHECKING -> REPORTING -> SLEEPING -> CHECKING ... -> STOPPED
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Protocol

from repo_migrator.constants import (
    ALERT_MIGRATION_COMPLETE,
    ALERT_MIGRATION_FAILURES,
    ALERT_MIGRATION_STALLED,
    ALERT_RUN_ABORTED,
    ALERT_STATUS_QUERY_FAILED,
    RUN_SUMMARY_FILE,
    STATUS_SNAPSHOT_FILE,
)
from repo_migrator.core.checkpoint import write_json_atomic, write_summary
from repo_migrator.core.config import MonitoringConfig
from repo_migrator.core.health import HealthMonitor, HealthReport, build_health_alert
from repo_migrator.core.state import MigrationStateTracker
from repo_migrator.exceptions import AuthenticationError, GatewayError
from repo_migrator.notifications.dispatcher import AlertDispatcher, make_alert
from repo_migrator.types import Alert, Severity, StatusSnapshot
from repo_migrator.utils.formatting import format_status_line
from repo_migrator.utils.logging import get_run_id, log_with_context


class StatusSource(Protocol):
    def fetch_counts(self) -> StatusSnapshot: ...


class LoopState(str, Enum):
    IDLE = "idle"
    CHECKING = "checking"
    REPORTING = "reporting"
    SLEEPING = "sleeping"
    STOPPED = "stopped"


class StopReason(str, Enum):
    COMPLETE = "complete"
    SINGLE_CYCLE = "single_cycle"
    MAX_RUNTIME = "max_runtime"
    REQUESTED = "stop_requested"
    AUTHENTICATION = "authentication_failed"


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, timezone.utc).isoformat()


class MonitoringLoop:
    """Drives health checks, status reporting and alerting on a timer.

    Args:
        config: Interval, continuity and max-runtime settings.
        tracker: Receives the counts read each cycle.
        health_monitor: Probed at the start of each cycle.
        dispatcher: Receives every alert the loop raises.
        status_source: Provides the current aggregate counts.
        output_dir: Where snapshot and summary files go; None disables them.
        clock: Wall-clock source in epoch seconds.
        sleep: Waits between cycles. Defaults to an event wait that
            :meth:`request_stop` interrupts.
    """

    def __init__(
        self,
        config: MonitoringConfig,
        tracker: MigrationStateTracker,
        health_monitor: HealthMonitor,
        dispatcher: AlertDispatcher,
        status_source: StatusSource,
        output_dir: Path | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Any] | None = None,
    ) -> None:
        self.config = config
        self.tracker = tracker
        self.health_monitor = health_monitor
        self.dispatcher = dispatcher
        self.status_source = status_source
        self.output_dir = output_dir
        self._clock = clock
        self._stop_event = threading.Event()
        self._sleep = sleep or self._stop_event.wait
        self._run_lock = threading.Lock()

        self.state = LoopState.IDLE
        self.cycles = 0
        self.alerts_sent = 0
        self.stop_reason: StopReason | None = None
        self.last_health: HealthReport | None = None

    def request_stop(self) -> None:
        """Ask the loop to stop after the current cycle. Interrupts sleeping."""
        log_with_context(logging.INFO, "Stop requested for monitoring loop")
        self._stop_event.set()

    # -- Loop ----------------------------------------------------------------

    def run(self) -> dict[str, Any]:
        """Run cycles until a stop condition holds.

        Returns:
            The run summary, also written to ``run_summary.yaml``.

        Raises:
            RuntimeError: If the loop is already running.
        """
        if not self._run_lock.acquire(blocking=False):
            raise RuntimeError("Monitoring loop is already running")
        try:
            self.stop_reason = None
            started = self._clock()
            log_with_context(
                logging.INFO,
                f"Monitoring loop started (interval {self.config.interval_seconds:.0f}s, "
                f"continuous={self.config.continuous})",
            )

            while True:
                self.run_cycle()
                if self._should_stop(started):
                    break
                self.state = LoopState.SLEEPING
                self._sleep(self.config.interval_seconds)
                if self._stop_event.is_set():
                    self.stop_reason = StopReason.REQUESTED
                    break

            self.state = LoopState.STOPPED
            return self._finish(started)
        finally:
            self._run_lock.release()

    def _should_stop(self, started: float) -> bool:
        if self.stop_reason is not None:
            return True
        if self._stop_event.is_set():
            self.stop_reason = StopReason.REQUESTED
        elif not self.config.continuous:
            self.stop_reason = StopReason.SINGLE_CYCLE
        elif (
            self.config.max_runtime_minutes > 0
            and self._clock() - started >= self.config.max_runtime_minutes * 60
        ):
            log_with_context(
                logging.INFO,
                f"Maximum runtime of {self.config.max_runtime_minutes:g} minutes reached",
            )
            self.stop_reason = StopReason.MAX_RUNTIME
        return self.stop_reason is not None

    def run_cycle(self) -> None:
        """One CHECKING then REPORTING pass."""
        self.cycles += 1

        self.state = LoopState.CHECKING
        self.last_health = self.health_monitor.check_all()
        if not self.last_health.healthy:
            self._send(build_health_alert(self.last_health))

        self.state = LoopState.REPORTING
        previous_failed = self.tracker.current_status().failed
        try:
            counts = self.status_source.fetch_counts()
        except AuthenticationError as e:
            log_with_context(
                logging.CRITICAL,
                f"Authentication failed while reading migration status: {e}",
            )
            self._send(
                make_alert(
                    ALERT_RUN_ABORTED,
                    Severity.CRITICAL,
                    f"Monitoring stopped: authentication failed ({e})",
                )
            )
            self.stop_reason = StopReason.AUTHENTICATION
            return
        except GatewayError as e:
            log_with_context(logging.ERROR, f"Failed to read migration status: {e}")
            self._send(
                make_alert(
                    ALERT_STATUS_QUERY_FAILED,
                    Severity.MEDIUM,
                    f"Could not read migration status: {e}",
                )
            )
            return

        snapshot = self.tracker.update_counts(
            pending=counts.pending,
            in_progress=counts.in_progress,
            migrated=counts.migrated,
            failed=counts.failed,
            tags={"source": "status"},
        )
        self._report(snapshot, previous_failed)

    def _report(self, snapshot: StatusSnapshot, previous_failed: int) -> None:
        if snapshot.failed > previous_failed:
            new_failures = snapshot.failed - previous_failed
            self._send(
                make_alert(
                    ALERT_MIGRATION_FAILURES,
                    Severity.HIGH,
                    f"{new_failures} new failed migration(s), "
                    f"{snapshot.failed} failed in total",
                    new_failures=new_failures,
                    failed=snapshot.failed,
                )
            )

        if self.tracker.is_complete():
            self._send(
                make_alert(
                    ALERT_MIGRATION_COMPLETE,
                    Severity.INFO,
                    f"Migration complete: {snapshot.migrated} migrated, "
                    f"{snapshot.failed} failed",
                    migrated=snapshot.migrated,
                    failed=snapshot.failed,
                )
            )
            self.stop_reason = StopReason.COMPLETE
        elif self.tracker.is_stalled():
            minutes = self.tracker.stalled_threshold_seconds / 60
            self._send(
                make_alert(
                    ALERT_MIGRATION_STALLED,
                    Severity.HIGH,
                    f"No change in '{self.tracker.tracked_metric}' for at least "
                    f"{minutes:g} minutes",
                    pending=snapshot.pending,
                    in_progress=snapshot.in_progress,
                )
            )

        log_with_context(
            logging.INFO,
            format_status_line(snapshot, self.tracker.rate(), self.tracker.eta()),
            cycle=self.cycles,
        )
        if self.output_dir is not None:
            write_json_atomic(
                self.output_dir / STATUS_SNAPSHOT_FILE,
                {"cycle": self.cycles, **self.tracker.snapshot()},
            )

    def _send(self, alert: Alert) -> None:
        if self.dispatcher.send(alert).delivered:
            self.alerts_sent += 1

    # -- Summary -------------------------------------------------------------

    def _finish(self, started: float) -> dict[str, Any]:
        stopped = self._clock()
        summary: dict[str, Any] = {
            "run_id": get_run_id(),
            "started_at": _iso(started),
            "stopped_at": _iso(stopped),
            "duration_seconds": round(stopped - started, 2),
            "cycles": self.cycles,
            "stop_reason": self.stop_reason.value if self.stop_reason else None,
            "alerts_sent": self.alerts_sent,
            "status": self.tracker.snapshot(),
            "health": {
                status.dependency: status.state.value
                for status in (self.last_health.statuses if self.last_health else [])
            },
        }
        log_with_context(
            logging.INFO,
            f"Monitoring loop stopped after {self.cycles} cycle(s): "
            f"{summary['stop_reason']}",
            stop_reason=summary["stop_reason"],
        )
        if self.output_dir is not None:
            write_summary(self.output_dir / RUN_SUMMARY_FILE, summary)
        return summary
