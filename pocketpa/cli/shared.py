"""Shared utilities for PocketPA CLI commands."""

from rich.console import Console

console = Console()


def format_hours(age_seconds: float) -> str:
    """Human age for tables: ``"-"`` when missing, minutes under an hour."""
    if age_seconds == float("inf"):
        return "-"
    if age_seconds < 3600:
        return f"{int(age_seconds // 60)}m"
    return f"{age_seconds / 3600:.1f}h"
