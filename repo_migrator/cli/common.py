"""Shared CLI infrastructure: option decorators, error handlers, and the CLI group."""

from __future__ import annotations

import datetime
import logging
import os
import signal
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator

import click

import repo_migrator
from repo_migrator.constants import EXIT_ERROR, EXIT_WARNING
from repo_migrator.core.config import load_config
from repo_migrator.core.context import RunContext
from repo_migrator.exceptions import (
    AuthenticationError,
    ConfigurationError,
    GatewayError,
    InventoryError,
    MigrationAbortedError,
    MigratorError,
    RateLimitError,
    TransientNetworkError,
)
from repo_migrator.utils.logging import log_with_context, new_run_id, setup_logger

# Create logger instance
logger = logging.getLogger("repo_migrator")

_STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


# ---------------------------------------------------------------------------
# Shared option decorator
# ---------------------------------------------------------------------------


def common_options(f: Callable[..., None]) -> Callable[..., None]:
    """Decorator that adds options shared across multiple subcommands.

    Args:
        f: The Click command function to decorate.

    Returns:
        The decorated function with common options attached.
    """
    f = click.option(
        "--config",
        default="config.yaml",
        show_default=True,
        help="Path to config YAML",
    )(f)
    f = click.option(
        "--verbose",
        "-v",
        is_flag=True,
        default=False,
        help="Enable verbose console logging (shows DEBUG level messages)",
    )(f)
    f = click.option(
        "--debug_api",
        is_flag=True,
        default=False,
        help="Enable detailed API request/response logging (creates very large log files)",
    )(f)
    f = click.option(
        "--json_logs",
        is_flag=True,
        default=False,
        help="Also write a JSON-lines log file to the output directory",
    )(f)
    return f


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group(
    invoke_without_command=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.version_option(version=repo_migrator.__version__, prog_name="repo-migrator")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Repository migration orchestrator.

    Args:
        ctx: The Click context (injected by ``@click.pass_context``).
    """
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# ---------------------------------------------------------------------------
# Run setup
# ---------------------------------------------------------------------------


def create_output_directory(base_dir: str = "migration_logs") -> str:
    """Create a timestamped output directory for one run.

    Returns:
        The path to the newly created output directory.
    """
    timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    output_dir = os.path.join(base_dir, f"run_{timestamp}")
    os.makedirs(output_dir, exist_ok=True)
    return output_dir


def build_run_context(
    config_path: str,
    verbose: bool,
    debug_api: bool,
    json_logs: bool,
    dry_run: bool = False,
    with_output_dir: bool = True,
) -> RunContext:
    """Configure logging, load the configuration and create the run context.

    Raises:
        ConfigurationError: If the configuration file is invalid.
    """
    run_id = new_run_id()
    output_dir = create_output_directory() if with_output_dir else None
    setup_logger(verbose, debug_api, output_dir, json_logs)
    if output_dir:
        log_with_context(logging.INFO, f"Output directory: {output_dir}")

    config = load_config(Path(config_path))
    return RunContext(
        run_id=run_id,
        config=config,
        output_dir=Path(output_dir or "."),
        dry_run=dry_run,
        verbose=verbose,
        debug_api=debug_api,
    )


def log_startup_info(command: str, params: dict[str, Any]) -> None:
    """Log the parameters a command was started with."""
    log_with_context(
        logging.INFO, f"Starting {command} with the following parameters:"
    )
    for key, value in params.items():
        log_with_context(logging.INFO, f"- {key}: {value}")


@contextmanager
def stop_on_interrupt(request_stop: Callable[[], None]) -> Iterator[None]:
    """Route the first Ctrl+C or SIGTERM to ``request_stop``.

    After the first signal Ctrl+C interrupts immediately and SIGTERM falls
    back to its default action. Signal handlers can only be installed from
    the main thread; elsewhere this is a no-op.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    previous = {sig: signal.getsignal(sig) for sig in _STOP_SIGNALS}

    def _handler(signum: int, frame: Any) -> None:
        log_with_context(
            logging.WARNING,
            f"{signal.Signals(signum).name} received - stopping after in-flight work. "
            "Press Ctrl+C again to abort immediately.",
        )
        signal.signal(signal.SIGINT, signal.default_int_handler)
        signal.signal(signal.SIGTERM, signal.SIG_DFL)
        request_stop()

    for sig in _STOP_SIGNALS:
        signal.signal(sig, _handler)
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------


def handle_gateway_error(e: GatewayError) -> None:
    """Handle platform API errors with specific messages.

    Args:
        e: The gateway error to handle.
    """
    if isinstance(e, AuthenticationError):
        log_with_context(logging.ERROR, f"Authentication failed: {e}")
        log_with_context(
            logging.INFO,
            "Check that the tokens named by token_env in your config are set, "
            "valid, and carry the scopes the migration needs.",
        )
    elif isinstance(e, RateLimitError):
        log_with_context(logging.ERROR, f"Rate limit exceeded: {e}")
        log_with_context(
            logging.INFO,
            "The run hit API rate limits. Consider using --resume once the limit resets.",
        )
    elif isinstance(e, TransientNetworkError):
        log_with_context(logging.ERROR, f"Platform unavailable: {e}")
        log_with_context(
            logging.INFO, "This is likely a temporary issue. Please try again later."
        )
    else:
        log_with_context(logging.ERROR, f"API error: {e}")


def handle_exception(e: BaseException) -> int:
    """Log an exception that ended a command and return its exit code.

    Args:
        e: The exception to handle.

    Returns:
        The process exit code for the failure.
    """
    if isinstance(e, GatewayError):
        handle_gateway_error(e)
    elif isinstance(e, MigrationAbortedError):
        log_with_context(logging.ERROR, f"Migration aborted: {e}")
        cause = e.__cause__
        if isinstance(cause, GatewayError):
            handle_gateway_error(cause)
        log_with_context(
            logging.INFO,
            "Completed items are recorded in the checkpoint; rerun with --resume.",
        )
    elif isinstance(e, ConfigurationError):
        log_with_context(logging.ERROR, f"Configuration error: {e}")
        log_with_context(
            logging.INFO,
            "Run 'repo-migrator init-config config.yaml' for a template.",
        )
    elif isinstance(e, InventoryError):
        log_with_context(logging.ERROR, f"Inventory error: {e}")
    elif isinstance(e, MigratorError):
        log_with_context(logging.ERROR, str(e))
    elif isinstance(e, FileNotFoundError):
        log_with_context(logging.ERROR, f"File not found: {e}")
        log_with_context(
            logging.INFO,
            "Please check that all required files exist and paths are correct.",
        )
    elif isinstance(e, KeyboardInterrupt):
        log_with_context(logging.WARNING, "Run interrupted by user.")
        log_with_context(
            logging.INFO, "You can continue the migration with --resume."
        )
        return EXIT_WARNING
    else:
        log_with_context(logging.ERROR, f"Run failed: {e}", exc_info=True)
    return EXIT_ERROR
