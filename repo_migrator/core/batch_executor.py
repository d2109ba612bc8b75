"""
Batch executor for work item migrations.

Work items are split into consecutive chunks of ``batch_size``. Every item of
a chunk runs concurrently on a thread pool, and the next chunk starts only once
every worker of the current one has finished (a barrier that bounds the burst
load on the platform APIs). Items that fail are retried together, round after
round, up to ``retry_count`` rounds.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Iterator

from tqdm import tqdm

from repo_migrator.constants import SUCCESS_RATE_OK, SUCCESS_RATE_WARNING
from repo_migrator.core.config import BatchConfig
from repo_migrator.core.state import MigrationStateTracker
from repo_migrator.exceptions import (
    AuthenticationError,
    InvalidTransitionError,
    ItemMigrationFailure,
    MigrationAbortedError,
)
from repo_migrator.types import (
    BatchReport,
    ItemOutcome,
    RunClassification,
    WorkItem,
    WorkItemStatus,
)
from repo_migrator.utils.logging import log_with_context

MigrateFn = Callable[[WorkItem], ItemOutcome]
ChunkCallback = Callable[[list[WorkItem]], None]


def classify(success_rate: float) -> RunClassification:
    """Map a success rate (percent) to the run classification."""
    if success_rate >= SUCCESS_RATE_OK:
        return RunClassification.OK
    if success_rate >= SUCCESS_RATE_WARNING:
        return RunClassification.WARNING
    return RunClassification.ERROR


def chunked(items: list[WorkItem], size: int) -> Iterator[list[WorkItem]]:
    """Yield consecutive, non-overlapping slices of at most ``size`` items."""
    for start in range(0, len(items), size):
        yield items[start : start + size]


class BatchExecutor:
    """Runs the migration operation over work items with bounded parallelism."""

    def __init__(
        self,
        config: BatchConfig,
        migrate: MigrateFn,
        tracker: MigrationStateTracker | None = None,
        sleep: Callable[[float], None] = time.sleep,
        show_progress: bool = False,
        on_chunk_complete: ChunkCallback | None = None,
    ) -> None:
        self.config = config
        self._migrate = migrate
        self._tracker = tracker
        self._sleep = sleep
        self._show_progress = show_progress
        self._on_chunk_complete = on_chunk_complete
        self._stop = threading.Event()
        self._in_flight: set[str] = set()
        self._in_flight_lock = threading.Lock()

    # -- Control -------------------------------------------------------------

    def request_stop(self) -> None:
        """Stop before the next chunk; in-flight items finish their attempt."""
        log_with_context(
            logging.WARNING,
            "Stop requested - finishing in-flight items before halting",
        )
        self._stop.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    # -- Run -----------------------------------------------------------------

    def run(self, items: list[WorkItem]) -> BatchReport:
        """Migrate every item once, then retry failures in rounds.

        Args:
            items: Work items to process. Items already migrated are counted as
                successes without being invoked again.

        Returns:
            The final report.

        Raises:
            MigrationAbortedError: If an authentication failure aborted the run.
        """
        started = time.monotonic()
        report = BatchReport(total=len(items))

        for item in items:
            if item.status == WorkItemStatus.FAILED:
                item.transition(WorkItemStatus.PENDING)
        pending = [item for item in items if item.status != WorkItemStatus.MIGRATED]
        report.skipped = len(items) - len(pending)

        if self._tracker is not None:
            self._tracker.register_items(items)

        log_with_context(
            logging.INFO,
            f"Starting batch run: {len(pending)} item(s) to migrate, "
            f"{report.skipped} already migrated, batch size {self.config.batch_size}, "
            f"retry rounds {self.config.retry_count}",
        )

        progress = tqdm(
            total=len(items),
            initial=report.skipped,
            desc="Migrating repositories",
            unit="repo",
            disable=not self._show_progress,
        )
        try:
            with ThreadPoolExecutor(
                max_workers=self.config.batch_size, thread_name_prefix="migrate"
            ) as pool:
                failures = self._run_pass(
                    pool,
                    pending,
                    report,
                    progress,
                    final_round=self.config.retry_count == 0,
                )

                round_number = 0
                while (
                    failures
                    and round_number < self.config.retry_count
                    and not self.stop_requested
                ):
                    round_number += 1
                    delay = self.config.retry_round_delay(round_number)
                    log_with_context(
                        logging.INFO,
                        f"Retry round {round_number}/{self.config.retry_count}: "
                        f"{len(failures)} failed item(s), waiting {delay:.0f}s",
                        retry_round=round_number,
                    )
                    self._sleep(delay)
                    if self.stop_requested:
                        break
                    report.retry_rounds = round_number
                    failures = self._run_pass(
                        pool,
                        failures,
                        report,
                        progress,
                        final_round=round_number == self.config.retry_count,
                    )
        finally:
            progress.close()
            report.duration = time.monotonic() - started

        report.stopped = self.stop_requested
        self._finalize(items, report)
        return report

    def _run_pass(
        self,
        pool: ThreadPoolExecutor,
        items: list[WorkItem],
        report: BatchReport,
        progress: tqdm,
        final_round: bool,
    ) -> list[WorkItem]:
        """Run one pass over ``items`` chunk by chunk; return the failures."""
        failures: list[WorkItem] = []

        for index, chunk in enumerate(chunked(items, self.config.batch_size)):
            if self.stop_requested:
                # Unattempted items keep their place for a later run
                remaining = items[index * self.config.batch_size :]
                failures.extend(remaining)
                break
            if index > 0 and self.config.batch_delay > 0:
                self._sleep(self.config.batch_delay)

            report.chunks += 1
            report.attempts += len(chunk)
            outcomes = self._run_chunk(pool, chunk, final_round)

            for item, outcome in zip(chunk, outcomes):
                if outcome.success:
                    progress.update(1)
                else:
                    failures.append(item)
                    if item.status == WorkItemStatus.FAILED:
                        progress.update(1)

            if self._on_chunk_complete is not None:
                self._on_chunk_complete(chunk)

        return failures

    def _run_chunk(
        self,
        pool: ThreadPoolExecutor,
        chunk: list[WorkItem],
        final_round: bool,
    ) -> list[ItemOutcome]:
        """Run every item of ``chunk`` concurrently and wait for all of them."""
        futures: list[Future[ItemOutcome]] = [
            pool.submit(self._attempt, item, final_round) for item in chunk
        ]
        wait(futures)

        outcomes: list[ItemOutcome] = []
        fatal: AuthenticationError | None = None
        for item, future in zip(chunk, futures):
            try:
                outcomes.append(future.result())
            except AuthenticationError as e:
                fatal = fatal or e
                outcomes.append(ItemOutcome.failure(str(e)))

        if fatal is not None:
            log_with_context(
                logging.CRITICAL,
                f"Authentication failure - aborting run: {fatal}",
            )
            raise MigrationAbortedError(f"Authentication failed: {fatal}") from fatal
        return outcomes

    # -- Per-item attempt (runs on worker threads) --------------------------

    def _claim(self, item: WorkItem) -> None:
        with self._in_flight_lock:
            if item.id in self._in_flight:
                raise InvalidTransitionError(
                    f"Work item {item.id} is already being migrated"
                )
            self._in_flight.add(item.id)

    def _release(self, item: WorkItem) -> None:
        with self._in_flight_lock:
            self._in_flight.discard(item.id)

    def _publish(self, item: WorkItem) -> None:
        if self._tracker is not None:
            self._tracker.record_item_status(item)

    def _attempt(self, item: WorkItem, final_round: bool) -> ItemOutcome:
        self._claim(item)
        try:
            item.transition(WorkItemStatus.IN_PROGRESS)
            item.attempt_count += 1
            self._publish(item)
            log_with_context(
                logging.DEBUG,
                f"Migrating {item.source_ref} -> {item.target_ref} "
                f"(attempt {item.attempt_count})",
                item=item.id,
            )

            started = time.monotonic()
            try:
                outcome = self._migrate(item)
            except AuthenticationError as e:
                item.last_error = str(e)
                item.transition(WorkItemStatus.PENDING)
                self._publish(item)
                raise
            except ItemMigrationFailure as e:
                outcome = ItemOutcome.failure(e.reason)
            except Exception as e:
                outcome = ItemOutcome.failure(f"{type(e).__name__}: {e}")
            if not outcome.duration:
                outcome.duration = time.monotonic() - started

            if outcome.success:
                item.last_error = None
                item.transition(WorkItemStatus.MIGRATED)
                log_with_context(
                    logging.INFO,
                    f"Migrated {item.id} in {outcome.duration:.1f}s",
                    item=item.id,
                )
            else:
                item.last_error = outcome.reason or "unknown error"
                item.transition(
                    WorkItemStatus.FAILED if final_round else WorkItemStatus.PENDING
                )
                log_with_context(
                    logging.WARNING,
                    f"Migration of {item.id} failed "
                    f"(attempt {item.attempt_count}): {item.last_error}",
                    item=item.id,
                )
            self._publish(item)
            return outcome
        finally:
            self._release(item)

    # -- Report --------------------------------------------------------------

    def _finalize(self, items: list[WorkItem], report: BatchReport) -> None:
        report.succeeded = sum(
            1 for item in items if item.status == WorkItemStatus.MIGRATED
        )
        report.failed = report.total - report.succeeded
        report.failed_items = {
            item.id: item.last_error or "not attempted"
            for item in items
            if item.status != WorkItemStatus.MIGRATED
        }

        classification = classify(report.success_rate)
        log_with_context(
            logging.INFO if classification == RunClassification.OK else logging.WARNING,
            f"Batch run finished: {report.succeeded} succeeded, {report.failed} failed "
            f"({report.success_rate:.1f}% success, {classification.value})",
            succeeded=report.succeeded,
            failed=report.failed,
        )
