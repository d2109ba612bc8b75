"""CLI command handlers for alert channel testing and config scaffolding."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click

from repo_migrator.cli.common import (
    build_run_context,
    cli,
    common_options,
    handle_exception,
)
from repo_migrator.constants import ALERT_TEST, EXIT_OK, EXIT_WARNING
from repo_migrator.core.config import create_default_config
from repo_migrator.notifications.channels import build_channels
from repo_migrator.notifications.dispatcher import AlertDispatcher, make_alert
from repo_migrator.types import Severity
from repo_migrator.utils.logging import log_with_context, setup_logger


@cli.command("test-alert")
@common_options
@click.option(
    "--severity",
    type=click.Choice([s.value for s in Severity], case_sensitive=False),
    default=Severity.INFO.value,
    show_default=True,
    help="Severity of the test alert",
)
@click.option(
    "--message",
    default="Test alert from repo-migrator",
    show_default=True,
    help="Alert message",
)
def send_test_alert(
    config: str,
    verbose: bool,
    debug_api: bool,
    json_logs: bool,
    severity: str,
    message: str,
) -> None:
    """Send a test alert through every enabled channel.

    Exits 0 when at least one channel delivered it, 1 otherwise.
    """
    try:
        ctx = build_run_context(
            config, verbose, debug_api, json_logs, with_output_dir=False
        )
        channels = build_channels(ctx.config.alerting)
        dispatcher = AlertDispatcher(ctx.config.alerting, channels)
        result = dispatcher.send(
            make_alert(
                ALERT_TEST, Severity(severity.upper()), message, run_id=ctx.run_id
            )
        )
    except (Exception, KeyboardInterrupt) as e:
        sys.exit(handle_exception(e))

    click.echo(f"Dispatch status: {result.status.value}")
    for delivery in result.deliveries:
        outcome = "ok" if delivery.success else f"failed ({delivery.error})"
        click.echo(f"  {delivery.channel}: {outcome}")
    sys.exit(EXIT_OK if result.delivered else EXIT_WARNING)


@cli.command("init-config")
@click.argument("path", default="config.yaml")
def init_config(path: str) -> None:
    """Write a default configuration file to PATH (never overwrites)."""
    setup_logger()
    if create_default_config(Path(path)):
        log_with_context(
            logging.INFO,
            f"Edit {path} and set the environment variables it references",
        )
        sys.exit(EXIT_OK)
    sys.exit(EXIT_WARNING)
