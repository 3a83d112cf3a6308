"""Display formatters and UI helpers for CLI."""

import json
import logging
from typing import Any, Dict, List

from rich.console import Console
from rich.table import Table

from ...models import (
    BackupInfo,
    DeltaSyncResult,
    DeviceSyncState,
    FullSyncResult,
    SyncConflict,
    SyncStatus,
)

console = Console()
logger = logging.getLogger(__name__)

STATE_STYLES = {
    DeviceSyncState.SYNCED: "green",
    DeviceSyncState.PENDING: "yellow",
    DeviceSyncState.CONFLICT: "red",
    DeviceSyncState.ERROR: "bold red",
}


def _fmt_time(value: Any) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "-"


def display_full_sync_result(result: FullSyncResult) -> None:
    """Display full sync results.

    Args:
        result: Full sync result
    """
    console.print("\n[bold green]✓ Full sync completed[/bold green]\n")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Metric", style="cyan", width=30)
    table.add_column("Value", style="green", justify="right")

    table.add_row("Synced Items", str(result.synced_items))
    conflicts = str(result.conflicts)
    if result.conflicts:
        conflicts = f"[yellow]{conflicts}[/yellow]"
    table.add_row("Conflicts", conflicts)
    table.add_row("Timestamp", _fmt_time(result.timestamp))

    console.print(table)
    console.print()


def display_delta_sync_result(result: DeltaSyncResult, verbose: bool = False) -> None:
    """Display delta sync results.

    Args:
        result: Delta sync result
        verbose: Also list every server change returned to the device
    """
    if result.failed_changes:
        console.print("\n[bold yellow]⚠️  Delta sync completed with failures[/bold yellow]\n")
    else:
        console.print("\n[bold green]✓ Delta sync completed[/bold green]\n")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Metric", style="cyan", width=30)
    table.add_column("Count", style="green", justify="right")

    table.add_row("Applied Changes", str(result.applied_changes))
    table.add_row("Conflicts", str(result.conflicts))
    table.add_row("Failed Changes", str(result.failed_changes))
    table.add_row("Server Changes", str(len(result.server_changes)))

    console.print(table)

    if verbose and result.server_changes:
        console.print("\n[bold]Server changes:[/bold]")
        for change in result.server_changes:
            console.print(f"  • {change}")
    console.print()


def display_sync_status(statuses: List[SyncStatus]) -> None:
    """Display the sync state of each device.

    Args:
        statuses: One status per device
    """
    if not statuses:
        console.print("[yellow]No devices registered[/yellow]")
        return

    table = Table(title="Device Sync Status", show_header=True, header_style="bold magenta")
    table.add_column("Device", style="cyan")
    table.add_column("Status")
    table.add_column("Last Sync")
    table.add_column("Pending", justify="right")
    table.add_column("Conflicts", justify="right")

    for status in statuses:
        style = STATE_STYLES.get(status.status, "white")
        table.add_row(
            status.device_id,
            f"[{style}]{status.status.value}[/{style}]",
            _fmt_time(status.last_sync_time),
            str(status.pending_changes),
            str(status.conflict_count),
        )

    console.print(table)


def display_sync_history(history: Dict[str, Any]) -> None:
    """Display one page of sync history.

    Args:
        history: Page dictionary from DatabaseService.get_sync_history
    """
    table = Table(
        title=f"Sync History (page {history['page']} of {max(history['total_pages'], 1)})",
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("Time")
    table.add_column("Type", style="cyan")
    table.add_column("Status")
    table.add_column("Items", justify="right")
    table.add_column("Conflicts", justify="right")

    for item in history["items"]:
        status = item["status"]
        if status != "completed":
            status = f"[yellow]{status}[/yellow]"
        table.add_row(
            _fmt_time(item["timestamp"]),
            item["sync_type"],
            status,
            str(item["synced_items"]),
            str(item["conflicts"]),
        )

    console.print(table)
    console.print(f"[dim]{history['total']} run(s) total[/dim]")


def display_conflicts(conflicts: List[SyncConflict], verbose: bool = False) -> None:
    """Display open conflicts.

    Args:
        conflicts: Conflicts to show
        verbose: Also print both versions of every conflict
    """
    if not conflicts:
        console.print("[green]✓ No open conflicts[/green]")
        return

    table = Table(title="Open Conflicts", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="cyan")
    table.add_column("Type")
    table.add_column("Resource")
    table.add_column("Created")

    for conflict in conflicts:
        table.add_row(
            conflict.id,
            conflict.conflict_type.value,
            f"{conflict.resource_type.value}:{conflict.resource_id}",
            _fmt_time(conflict.created_at),
        )

    console.print(table)

    if verbose:
        for conflict in conflicts:
            console.print(f"\n[bold]{conflict.id}[/bold] ({conflict})")
            console.print("  [cyan]local:[/cyan]  " + json.dumps(conflict.local_version))
            console.print("  [cyan]remote:[/cyan] " + json.dumps(conflict.remote_version))


def display_backups(backups: List[BackupInfo]) -> None:
    """Display a user's backups.

    Args:
        backups: Backups, newest first
    """
    if not backups:
        console.print("[yellow]No backups found[/yellow]")
        return

    table = Table(title="Backups", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="cyan")
    table.add_column("Type")
    table.add_column("Created")
    table.add_column("Items", justify="right")
    table.add_column("Size", justify="right")

    for backup in backups:
        table.add_row(
            backup.id,
            backup.type.value,
            _fmt_time(backup.created_at),
            str(backup.item_count),
            f"{backup.size:,} B",
        )

    console.print(table)


def display_statistics(stats: Dict[str, int]) -> None:
    """Display table row counts.

    Args:
        stats: Mapping of table name to row count
    """
    table = Table(show_header=False)
    table.add_column("Table", style="cyan")
    table.add_column("Rows", style="green", justify="right")

    for name, count in stats.items():
        table.add_row(name.replace("_", " ").title(), str(count))

    console.print(table)
