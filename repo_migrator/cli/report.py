"""
Report generation for repository migration runs
"""

from __future__ import annotations

import datetime
import logging
from pathlib import Path
from typing import Any

import click
import yaml

from repo_migrator.core.batch_executor import classify
from repo_migrator.core.context import RunContext
from repo_migrator.core.state import MigrationStateTracker
from repo_migrator.types import BatchReport, RunClassification, WorkItem
from repo_migrator.utils.formatting import format_duration
from repo_migrator.utils.logging import log_with_context


def _item_entry(item: WorkItem) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "id": item.id,
        "source": item.source_ref,
        "target": item.target_ref,
        "status": item.status.value,
        "attempts": item.attempt_count,
    }
    if item.last_error:
        entry["last_error"] = item.last_error
    return entry


def generate_report(
    ctx: RunContext,
    report: BatchReport,
    items: list[WorkItem],
    tracker: MigrationStateTracker | None = None,
) -> Path:
    """Write the migration report for a batch run.

    Args:
        ctx: The run context; the report goes into its output directory.
        report: The batch executor's final report.
        items: Every work item of the run, in inventory order.
        tracker: Optional state tracker whose snapshot is included.

    Returns:
        Path of the written report file.
    """
    classification = classify(report.success_rate)
    data: dict[str, Any] = {
        "run_id": ctx.run_id,
        "generated_at": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "dry_run": ctx.dry_run,
        "classification": classification.value,
        "exit_code": classification.exit_code,
        "summary": report.to_dict(),
        "items": [_item_entry(item) for item in items],
    }
    if tracker is not None:
        data["status"] = tracker.snapshot()

    report_file = ctx.report_path
    report_file.parent.mkdir(parents=True, exist_ok=True)
    with open(report_file, "w") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)

    log_with_context(logging.INFO, f"Migration report written to {report_file}")
    return report_file


def print_run_summary(
    report: BatchReport,
    classification: RunClassification,
    report_file: Path | None = None,
    dry_run: bool = False,
) -> None:
    """Print a summary of the batch run to the console."""
    click.echo("\n" + "=" * 80)
    click.echo("DRY RUN SUMMARY" if dry_run else "MIGRATION RUN SUMMARY")
    click.echo("=" * 80)
    verb = "would be migrated" if dry_run else "migrated"
    click.echo(f"Repositories in inventory: {report.total}")
    click.echo(f"Repositories {verb}: {report.succeeded}")
    click.echo(f"Already migrated (skipped): {report.skipped}")
    click.echo(f"Failed: {report.failed}")
    click.echo(f"Success rate: {report.success_rate:.1f}% ({classification.value})")
    click.echo(f"Retry rounds used: {report.retry_rounds}")
    click.echo(f"Duration: {format_duration(report.duration)}")

    if report.failed_items:
        click.echo("\nFailed repositories:")
        for item_id, error in sorted(report.failed_items.items()):
            click.echo(f"  - {item_id}: {error}")

    if report_file is not None:
        click.echo(f"\nDetailed report saved to {report_file}")
    click.echo("=" * 80)
    if dry_run:
        click.echo("\nTo perform the actual migration, run again without --dry_run")
        click.echo("=" * 80)
