"""CLI command handler for the batch migration workflow."""

from __future__ import annotations

import logging
import sys
import time
from pathlib import Path

import click

from repo_migrator.cli.common import (
    build_run_context,
    cli,
    common_options,
    handle_exception,
    log_startup_info,
    stop_on_interrupt,
)
from repo_migrator.cli.report import generate_report, print_run_summary
from repo_migrator.constants import ALERT_BATCH_COMPLETE, ALERT_RUN_ABORTED
from repo_migrator.core.batch_executor import BatchExecutor
from repo_migrator.core.checkpoint import (
    CheckpointData,
    MetricLogWriter,
    clear_checkpoint,
    load_checkpoint,
    save_checkpoint,
)
from repo_migrator.core.context import RunContext
from repo_migrator.core.migration_logging import log_run_failure, log_run_summary
from repo_migrator.core.state import MigrationStateTracker
from repo_migrator.exceptions import MigrationAbortedError
from repo_migrator.notifications.channels import build_channels
from repo_migrator.notifications.dispatcher import AlertDispatcher, make_alert
from repo_migrator.services.inventory import load_work_items
from repo_migrator.services.migration_tool import MigrationTool
from repo_migrator.types import RunClassification, Severity, WorkItem
from repo_migrator.utils.logging import log_with_context

_COMPLETION_SEVERITY = {
    RunClassification.OK: Severity.INFO,
    RunClassification.WARNING: Severity.MEDIUM,
    RunClassification.ERROR: Severity.HIGH,
}


# ---------------------------------------------------------------------------
# migrate subcommand
# ---------------------------------------------------------------------------


@cli.command()
@common_options
@click.option(
    "--inventory",
    required=True,
    help="Path to the inventory file (CSV, JSON or YAML) listing the repositories",
)
@click.option(
    "--dry_run",
    is_flag=True,
    default=False,
    help="Validation-only mode - renders every migration command without running it",
)
@click.option(
    "--resume",
    is_flag=True,
    default=False,
    help="Skip repositories recorded as migrated in the checkpoint of a previous run",
)
@click.option(
    "--no_progress",
    is_flag=True,
    default=False,
    help="Hide the progress bar",
)
def migrate(
    config: str,
    verbose: bool,
    debug_api: bool,
    json_logs: bool,
    inventory: str,
    dry_run: bool,
    resume: bool,
    no_progress: bool,
) -> None:
    """Migrate every repository in the inventory in parallel batches.

    Exits 0 when at least 95% of the repositories migrated, 1 when at least
    80% did, and 2 otherwise or when the run was aborted.
    """
    started = time.monotonic()
    try:
        ctx = build_run_context(config, verbose, debug_api, json_logs, dry_run=dry_run)
        log_startup_info(
            "migration",
            {
                "Inventory": inventory,
                "Config": Path(config).resolve(),
                "Dry run": dry_run,
                "Resume": resume,
                "Verbose logging": verbose,
                "Debug API calls": debug_api,
            },
        )
        exit_code = run_batch_migration(
            ctx, Path(inventory), resume=resume, show_progress=not no_progress
        )
    except (Exception, KeyboardInterrupt) as e:
        log_run_failure(e, time.monotonic() - started, dry_run)
        sys.exit(handle_exception(e))
    sys.exit(exit_code)


# ---------------------------------------------------------------------------
# Batch run
# ---------------------------------------------------------------------------


def _restore_checkpoint(
    ctx: RunContext, items: list[WorkItem], resume: bool
) -> CheckpointData:
    if resume:
        checkpoint = load_checkpoint(ctx.checkpoint_path)
        if checkpoint is not None:
            restored = checkpoint.apply(items)
            log_with_context(
                logging.INFO,
                f"Resuming: {restored} repository(ies) already migrated per checkpoint",
                restored=restored,
            )
            return checkpoint
        log_with_context(
            logging.WARNING,
            f"No usable checkpoint at {ctx.checkpoint_path}, starting from scratch",
        )
    return CheckpointData()


def run_batch_migration(
    ctx: RunContext,
    inventory_path: Path,
    resume: bool = False,
    show_progress: bool = True,
    dispatcher: AlertDispatcher | None = None,
    tool: MigrationTool | None = None,
) -> int:
    """Run one batch migration over the inventory.

    Args:
        ctx: The run context.
        inventory_path: Inventory file listing the work items.
        resume: Restore completed items from the checkpoint first.
        show_progress: Show a progress bar on the terminal.
        dispatcher: Alert dispatcher; built from the config when omitted.
        tool: Migration operation; built from the config when omitted.

    Returns:
        The process exit code derived from the run classification.

    Raises:
        InventoryError: If the inventory cannot be loaded.
        MigrationAbortedError: If an authentication failure aborted the run.
    """
    config = ctx.config
    items = load_work_items(inventory_path)
    checkpoint = _restore_checkpoint(ctx, items, resume)

    # dry runs never touch the persistent metric log
    metric_log_path = None if ctx.dry_run else ctx.metric_log_path
    tracker = MigrationStateTracker(
        config.monitoring.stalled_threshold_minutes,
        metric_log=MetricLogWriter(metric_log_path) if metric_log_path else None,
        tracked_metric=config.monitoring.tracked_metric,
    )
    if dispatcher is None:
        dispatcher = AlertDispatcher(config.alerting, build_channels(config.alerting))
    if tool is None:
        tool = MigrationTool(config.migration_tool, dry_run=ctx.dry_run)

    def persist(chunk: list[WorkItem]) -> None:
        for item in chunk:
            checkpoint.record(item)
        if not ctx.dry_run:
            save_checkpoint(ctx.checkpoint_path, checkpoint)

    executor = BatchExecutor(
        config.batch,
        tool,
        tracker=tracker,
        show_progress=show_progress,
        on_chunk_complete=persist,
    )

    try:
        with stop_on_interrupt(executor.request_stop):
            report = executor.run(items)
    except MigrationAbortedError as e:
        persist(items)
        dispatcher.send(
            make_alert(
                ALERT_RUN_ABORTED,
                Severity.CRITICAL,
                f"{ctx.log_prefix}Migration run aborted: {e}",
            )
        )
        raise

    report_file = generate_report(ctx, report, items, tracker)
    classification = log_run_summary(report, ctx.dry_run)
    print_run_summary(report, classification, report_file, ctx.dry_run)

    dispatcher.send(
        make_alert(
            ALERT_BATCH_COMPLETE,
            _COMPLETION_SEVERITY[classification],
            f"{ctx.log_prefix}Batch run finished: {report.succeeded}/{report.total} "
            f"migrated ({report.success_rate:.1f}%)",
            run_id=ctx.run_id,
            failed=report.failed,
            classification=classification.value,
        )
    )

    if not ctx.dry_run:
        if report.failed == 0:
            clear_checkpoint(ctx.checkpoint_path)
        else:
            persist(items)
    return classification.exit_code
