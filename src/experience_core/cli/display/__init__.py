"""CLI display and formatting utilities."""

from .formatters import (
    display_backups,
    display_conflicts,
    display_delta_sync_result,
    display_full_sync_result,
    display_statistics,
    display_sync_history,
    display_sync_status,
)

__all__ = [
    "display_backups",
    "display_conflicts",
    "display_delta_sync_result",
    "display_full_sync_result",
    "display_statistics",
    "display_sync_history",
    "display_sync_status",
]
