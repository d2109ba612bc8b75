"""Immutable run context.

RunContext is a frozen dataclass created once per CLI invocation. It carries
the loaded configuration, the run correlation id and mode flags, and derives
the paths of every file the run writes.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from repo_migrator.constants import CHECKPOINT_FILE, REPORT_FILE
from repo_migrator.core.config import OrchestratorConfig


@dataclass(frozen=True)
class RunContext:
    """Immutable context for a run. Created once, shared everywhere."""

    run_id: str
    config: OrchestratorConfig
    output_dir: Path

    # Mode flags
    dry_run: bool = False
    verbose: bool = False
    debug_api: bool = False

    @property
    def state_dir(self) -> Path:
        """Directory shared across runs (checkpoint and metric log)."""
        return Path(self.config.state.output_dir)

    @property
    def checkpoint_path(self) -> Path:
        return self.state_dir / CHECKPOINT_FILE

    @property
    def metric_log_path(self) -> Path | None:
        return self.config.state.metric_log_path

    @property
    def report_path(self) -> Path:
        return self.output_dir / REPORT_FILE

    @property
    def log_prefix(self) -> str:
        """Mode-aware log prefix, e.g. ``"[DRY RUN] "``."""
        return "[DRY RUN] " if self.dry_run else ""
