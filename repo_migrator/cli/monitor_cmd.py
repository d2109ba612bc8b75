"""CLI command handler for the monitoring loop."""

from __future__ import annotations

import dataclasses
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
from repo_migrator.constants import EXIT_ERROR, EXIT_OK
from repo_migrator.core.checkpoint import MetricLogWriter
from repo_migrator.core.context import RunContext
from repo_migrator.core.health import build_health_monitor
from repo_migrator.core.monitor_loop import MonitoringLoop, StopReason
from repo_migrator.core.state import MigrationStateTracker
from repo_migrator.exceptions import ConfigurationError
from repo_migrator.notifications.channels import build_channels
from repo_migrator.notifications.dispatcher import AlertDispatcher
from repo_migrator.services.gateway import MigrationStatusSource, ServiceGateway
from repo_migrator.services.inventory import load_work_items
from repo_migrator.utils.formatting import format_duration, format_rate


@cli.command()
@common_options
@click.option(
    "--inventory",
    default=None,
    help="Inventory file; repositories the target has not seen yet count as pending",
)
@click.option(
    "--once",
    is_flag=True,
    default=False,
    help="Run a single check-and-report cycle, then exit",
)
def monitor(
    config: str,
    verbose: bool,
    debug_api: bool,
    json_logs: bool,
    inventory: str | None,
    once: bool,
) -> None:
    """Watch a running migration: probe health, track progress, send alerts."""
    started = time.monotonic()
    try:
        ctx = build_run_context(config, verbose, debug_api, json_logs)
        log_startup_info(
            "monitoring",
            {
                "Config": Path(config).resolve(),
                "Inventory": inventory or "(none)",
                "Single cycle": once,
            },
        )
        summary = run_monitor(ctx, Path(inventory) if inventory else None, once)
    except (Exception, KeyboardInterrupt) as e:
        click.echo(f"Monitoring failed after {format_duration(time.monotonic() - started)}")
        sys.exit(handle_exception(e))

    status = summary["status"]
    click.echo(
        f"Monitoring stopped ({summary['stop_reason']}) after {summary['cycles']} "
        f"cycle(s): {status['percent_complete']:.1f}% complete, "
        f"rate {format_rate(status['rate_per_second'])}, "
        f"ETA {format_duration(status['eta_seconds'])}"
    )
    if summary["stop_reason"] == StopReason.AUTHENTICATION.value:
        sys.exit(EXIT_ERROR)
    sys.exit(EXIT_OK)


def run_monitor(
    ctx: RunContext, inventory_path: Path | None = None, once: bool = False
) -> dict:
    """Build the loop's collaborators from the configuration and run it.

    Raises:
        ConfigurationError: If the target platform has no status endpoint.
    """
    config = ctx.config
    if not config.target.configured or not config.target.status_path:
        raise ConfigurationError(
            "Monitoring needs target.base_url and target.status_path in the config"
        )

    source_gateway = ServiceGateway(config.source, config.api)
    target_gateway = ServiceGateway(config.target, config.api)
    inventory_total = (
        len(load_work_items(inventory_path)) if inventory_path is not None else None
    )

    metric_log_path = ctx.metric_log_path
    tracker = MigrationStateTracker(
        config.monitoring.stalled_threshold_minutes,
        metric_log=MetricLogWriter(metric_log_path) if metric_log_path else None,
        tracked_metric=config.monitoring.tracked_metric,
    )
    monitoring = (
        dataclasses.replace(config.monitoring, continuous=False)
        if once
        else config.monitoring
    )
    loop = MonitoringLoop(
        monitoring,
        tracker,
        build_health_monitor(config.health, source_gateway, target_gateway),
        AlertDispatcher(config.alerting, build_channels(config.alerting)),
        MigrationStatusSource(
            target_gateway, config.target.status_path, inventory_total
        ),
        output_dir=ctx.output_dir,
    )
    with stop_on_interrupt(loop.request_stop):
        return loop.run()
