"""
Run success/failure logging for the repository migration orchestrator.

Kept apart from the CLI so the command functions stay focused on control flow.
Records are structured: statistics are passed as kwargs so they appear as
extra fields in JSON log output while staying readable on the console.
"""

from __future__ import annotations

import logging
import traceback

from repo_migrator.core.batch_executor import classify
from repo_migrator.types import BatchReport, RunClassification
from repo_migrator.utils.logging import log_with_context


def log_run_summary(report: BatchReport, dry_run: bool = False) -> RunClassification:
    """Log the final status of a batch run with a summary of its report.

    Args:
        report: The batch executor's final report.
        dry_run: Whether the run only validated the commands.

    Returns:
        The run classification that determines the exit code.
    """
    classification = classify(report.success_rate)
    duration_minutes = report.duration / 60

    # --- Outcome header ---------------------------------------------------
    if dry_run:
        log_with_context(
            logging.INFO,
            "DRY RUN VALIDATION COMPLETED",
            outcome="dry_run_complete",
        )
    elif report.stopped:
        log_with_context(
            logging.WARNING,
            "MIGRATION RUN WAS STOPPED BEFORE ALL ITEMS WERE ATTEMPTED",
            outcome="stopped",
        )
    elif classification == RunClassification.OK:
        log_with_context(
            logging.INFO,
            "REPOSITORY MIGRATION RUN COMPLETED SUCCESSFULLY",
            outcome="success",
        )
    else:
        log_with_context(
            logging.WARNING,
            f"REPOSITORY MIGRATION RUN COMPLETED WITH STATUS {classification.value.upper()}",
            outcome=classification.value.lower(),
        )

    # --- Statistics --------------------------------------------------------
    log_with_context(
        logging.INFO,
        f"Duration: {duration_minutes:.1f} minutes ({report.duration:.1f} seconds)",
        duration_seconds=report.duration,
    )
    log_with_context(
        logging.INFO,
        f"Repositories: {report.total} total, {report.succeeded} migrated, "
        f"{report.failed} failed, {report.skipped} already migrated",
        total=report.total,
        succeeded=report.succeeded,
        failed=report.failed,
    )
    log_with_context(
        logging.INFO,
        f"Success rate: {report.success_rate:.1f}% "
        f"({report.attempts} attempts, {report.chunks} chunks, "
        f"{report.retry_rounds} retry rounds)",
        success_rate=round(report.success_rate, 2),
    )

    # --- Issues -----------------------------------------------------------
    for item_id, error in sorted(report.failed_items.items()):
        log_with_context(
            logging.WARNING,
            f"Failed: {item_id}: {error}",
            item=item_id,
        )

    # --- Next-steps guidance ----------------------------------------------
    if dry_run:
        log_with_context(
            logging.INFO,
            "Validation complete. Review the logs and run without"
            " --dry_run to migrate.",
        )
    elif report.failed_items:
        log_with_context(
            logging.WARNING,
            "Some repositories were not migrated. Fix the errors above and"
            " run again with --resume to retry only those.",
        )
    return classification


def log_run_failure(exception: BaseException, duration: float, dry_run: bool = False) -> None:
    """Log the final status of a run that ended with an exception.

    Args:
        exception: The exception that ended the run.
        duration: Run duration in seconds before the failure.
        dry_run: Whether the run only validated the commands.
    """
    is_interrupt = isinstance(exception, KeyboardInterrupt)
    duration_minutes = duration / 60

    if is_interrupt:
        log_with_context(
            logging.WARNING,
            "DRY RUN VALIDATION INTERRUPTED BY USER"
            if dry_run
            else "REPOSITORY MIGRATION RUN INTERRUPTED BY USER",
            outcome="interrupted",
            exception_type="KeyboardInterrupt",
        )
    else:
        log_with_context(
            logging.ERROR,
            "DRY RUN VALIDATION FAILED" if dry_run else "REPOSITORY MIGRATION RUN FAILED",
            outcome="failed",
            exception_type=type(exception).__name__,
            exception_message=str(exception),
        )
        log_with_context(
            logging.ERROR,
            f"Exception: {type(exception).__name__}: {exception!s}",
            duration_seconds=duration,
        )

    log_with_context(
        logging.WARNING if is_interrupt else logging.ERROR,
        f"Duration before {'interruption' if is_interrupt else 'failure'}:"
        f" {duration_minutes:.1f} minutes ({duration:.1f} seconds)",
        duration_seconds=duration,
    )

    # Tracebacks are not useful for interrupts
    if not is_interrupt:
        tb = traceback.format_exc()
        if tb and tb.strip() != "NoneType: None":
            log_with_context(logging.DEBUG, f"Traceback:\n{tb}")

    log_with_context(
        logging.WARNING if is_interrupt else logging.ERROR,
        "Run again with --resume to continue from the last checkpoint.",
    )
