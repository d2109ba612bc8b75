"""Core orchestration: configuration, batch execution, tracking and monitoring."""

__all__ = [
    "batch_executor",
    "checkpoint",
    "config",
    "context",
    "health",
    "migration_logging",
    "monitor_loop",
    "state",
]
