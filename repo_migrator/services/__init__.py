"""External collaborators: platform APIs, the migration tool and inventories."""

__all__ = [
    "gateway",
    "inventory",
    "migration_tool",
]
