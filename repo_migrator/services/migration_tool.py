"""Invocation of the external migration command for one work item.

Only the exit status and, optionally, a completion marker in stdout are
interpreted. Everything else the tool prints is kept for diagnostics.
"""

from __future__ import annotations

import logging
import subprocess
import time
from typing import Any

from repo_migrator.core.config import MigrationToolConfig
from repo_migrator.types import ItemOutcome, WorkItem
from repo_migrator.utils.logging import log_with_context

_OUTPUT_TAIL_CHARS = 4000


def item_placeholders(item: WorkItem) -> dict[str, str]:
    """Values available to the command template for ``item``.

    ``source_ref`` is ``org/project/repo`` (or ``org/repo``) and ``target_ref``
    is ``org/repo``; the split parts are exposed individually.
    """
    source_parts = item.source_ref.split("/")
    target_org, _, target_name = item.target_ref.rpartition("/")
    return {
        "id": item.id,
        "source": item.source_ref,
        "target": item.target_ref,
        "source_org": source_parts[0],
        "source_project": source_parts[1] if len(source_parts) > 2 else "",
        "source_name": source_parts[-1],
        "target_org": target_org,
        "target_name": target_name,
    }


def _last_line(text: str) -> str:
    lines = [line.strip() for line in text.strip().splitlines() if line.strip()]
    return lines[-1] if lines else ""


def _tail(text: str | bytes | None) -> str:
    if text is None:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    return text[-_OUTPUT_TAIL_CHARS:]


class MigrationTool:
    """Runs the configured migration command once per work item."""

    def __init__(self, config: MigrationToolConfig, dry_run: bool = False) -> None:
        self.config = config
        self.dry_run = dry_run

    def build_command(self, item: WorkItem) -> list[str]:
        """Render the command template for ``item``.

        Raises:
            KeyError: If the template references an unknown placeholder.
        """
        values = item_placeholders(item)
        return [part.format(**values) for part in self.config.command]

    def __call__(self, item: WorkItem) -> ItemOutcome:
        return self.migrate(item)

    def migrate(self, item: WorkItem) -> ItemOutcome:
        """Run the migration command for ``item`` and interpret its result."""
        command = self.build_command(item)

        if self.dry_run:
            log_with_context(
                logging.INFO,
                f"[DRY RUN] Would run: {' '.join(command)}",
                item=item.id,
            )
            return ItemOutcome(success=True, reason="dry run", exit_code=0)

        log_with_context(
            logging.DEBUG, f"Running: {' '.join(command)}", item=item.id
        )
        started = time.monotonic()
        run_kwargs: dict[str, Any] = {
            "capture_output": True,
            "text": True,
            "timeout": self.config.timeout,
            "check": False,
        }
        if self.config.working_dir:
            run_kwargs["cwd"] = self.config.working_dir

        try:
            completed = subprocess.run(command, **run_kwargs)
        except subprocess.TimeoutExpired as e:
            return ItemOutcome.failure(
                f"migration command timed out after {self.config.timeout:.0f}s",
                stdout=_tail(e.stdout),
                stderr=_tail(e.stderr),
                duration=time.monotonic() - started,
            )
        except OSError as e:
            return ItemOutcome.failure(
                f"could not start migration command: {e}",
                duration=time.monotonic() - started,
            )

        duration = time.monotonic() - started
        stdout = _tail(completed.stdout)
        stderr = _tail(completed.stderr)

        if completed.returncode != 0:
            detail = _last_line(stderr) or _last_line(stdout) or "no output"
            return ItemOutcome.failure(
                f"exit code {completed.returncode}: {detail}",
                exit_code=completed.returncode,
                stdout=stdout,
                stderr=stderr,
                duration=duration,
            )

        marker = self.config.completion_marker
        if marker and marker not in completed.stdout:
            return ItemOutcome.failure(
                f"completion marker '{marker}' not found in output",
                exit_code=completed.returncode,
                stdout=stdout,
                stderr=stderr,
                duration=duration,
            )

        return ItemOutcome(
            success=True,
            exit_code=completed.returncode,
            stdout=stdout,
            stderr=stderr,
            duration=duration,
        )
