"""Human-readable formatting for durations, rates and status lines."""

from __future__ import annotations

from repo_migrator.types import StatusSnapshot


def format_duration(seconds: float | None) -> str:
    """Render a number of seconds as ``1d 2h 3m``, ``4m 5s`` or ``6s``.

    Args:
        seconds: Duration in seconds, or None when unknown.

    Returns:
        A compact duration string, or ``"unavailable"`` for None.
    """
    if seconds is None:
        return "unavailable"
    total = max(int(round(seconds)), 0)
    days, rem = divmod(total, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, secs = divmod(rem, 60)

    if days:
        return f"{days}d {hours}h {minutes}m"
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def format_rate(per_second: float | None) -> str:
    """Render a per-second rate as items per hour."""
    if per_second is None:
        return "unavailable"
    return f"{per_second * 3600:.1f}/h"


def format_status_line(
    snapshot: StatusSnapshot,
    rate: float | None = None,
    eta: float | None = None,
) -> str:
    """One-line projection of migration progress for logs and the console."""
    return (
        f"{snapshot.percent_complete:.1f}% complete | "
        f"migrated {snapshot.migrated}/{snapshot.total} | "
        f"in progress {snapshot.in_progress} | "
        f"pending {snapshot.pending} | "
        f"failed {snapshot.failed} | "
        f"rate {format_rate(rate)} | "
        f"ETA {format_duration(eta)}"
    )
