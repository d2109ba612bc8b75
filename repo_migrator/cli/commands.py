"""
Command-line entry point for the repository migration orchestrator.

Importing the command modules registers their subcommands on the shared
click group.
"""

from repo_migrator.cli import (  # noqa: F401
    alert_cmd,
    health_cmd,
    migrate_cmd,
    monitor_cmd,
)
from repo_migrator.cli.common import cli


def main() -> None:
    """Main entry point for the repo-migrator command."""
    cli()


if __name__ == "__main__":
    main()
