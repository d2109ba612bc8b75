"""Shared utilities for logging and human-readable formatting."""

__all__ = [
    "formatting",
    "logging",
]
