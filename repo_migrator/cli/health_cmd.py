"""CLI command handler for one-off dependency health checks."""

from __future__ import annotations

import sys

import click

from repo_migrator.cli.common import (
    build_run_context,
    cli,
    common_options,
    handle_exception,
)
from repo_migrator.constants import EXIT_OK, EXIT_WARNING
from repo_migrator.core.health import build_health_alert, build_health_monitor
from repo_migrator.notifications.channels import build_channels
from repo_migrator.notifications.dispatcher import AlertDispatcher
from repo_migrator.services.gateway import ServiceGateway
from repo_migrator.types import HealthState

_STATE_COLORS = {
    HealthState.HEALTHY: "green",
    HealthState.DEGRADED: "yellow",
    HealthState.UNHEALTHY: "red",
}


@cli.command("health-check")
@common_options
@click.option(
    "--alert",
    "send_alert",
    is_flag=True,
    default=False,
    help="Send a HealthCheckFailed alert through the configured channels when unhealthy",
)
def health_check(
    config: str,
    verbose: bool,
    debug_api: bool,
    json_logs: bool,
    send_alert: bool,
) -> None:
    """Probe the source and target APIs and the network targets once.

    Exits 0 when every dependency is healthy or degraded, 1 otherwise.
    """
    try:
        ctx = build_run_context(
            config, verbose, debug_api, json_logs, with_output_dir=False
        )
        cfg = ctx.config
        monitor = build_health_monitor(
            cfg.health,
            ServiceGateway(cfg.source, cfg.api),
            ServiceGateway(cfg.target, cfg.api),
        )
        report = monitor.check_all()
    except (Exception, KeyboardInterrupt) as e:
        sys.exit(handle_exception(e))

    for status in report.statuses:
        latency = (
            f"{status.latency_ms:.0f} ms" if status.latency_ms is not None else "-"
        )
        line = click.style(
            f"{status.state.value:<10}", fg=_STATE_COLORS[status.state], bold=True
        )
        click.echo(f"{line} {status.dependency:<30} {latency:>10}")
        if status.error:
            click.echo(f"           {status.error}")

    if not report.statuses:
        click.echo("No dependencies configured.")

    if report.healthy:
        sys.exit(EXIT_OK)

    if send_alert:
        AlertDispatcher(cfg.alerting, build_channels(cfg.alerting)).send(
            build_health_alert(report)
        )
    sys.exit(EXIT_WARNING)
