"""Alert routing to console, chat webhooks and email."""

__all__ = [
    "channels",
    "dispatcher",
]
