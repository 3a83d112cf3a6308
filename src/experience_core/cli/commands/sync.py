"""Sync commands: full sync, delta sync, status and history."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from ...exceptions import CoreError
from ...utils.serialization import dumps
from ...utils.timeutils import EPOCH
from ..app import ExperienceCoreApp
from ..display import (
    display_delta_sync_result,
    display_full_sync_result,
    display_sync_history,
    display_sync_status,
)

console = Console()
logger = logging.getLogger(__name__)

DATETIME_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S"]


@click.group("sync")
def sync() -> None:
    """Synchronize a device with the server store."""
    pass


@sync.command(name="full")
@click.argument("user_id")
@click.argument("device_id")
@click.pass_obj
def sync_full(app: ExperienceCoreApp, user_id: str, device_id: str) -> None:
    """Run a full sync for a device.

    Examples:
        experience-core sync full USER_ID DEVICE_ID
    """
    console.print("\n[bold cyan]🔄 Starting full sync...[/bold cyan]")
    try:
        result = app.sync_service.perform_full_sync(user_id, device_id)
    except CoreError as e:
        logger.error(f"Full sync failed: {e}")
        console.print(f"\n[red]✗ Sync failed: {e}[/red]")
        raise click.ClickException(str(e))
    display_full_sync_result(result)


@sync.command(name="delta")
@click.argument("user_id")
@click.argument("device_id")
@click.argument(
    "changes_file", type=click.Path(exists=True, dir_okay=False, path_type=Path)
)
@click.option(
    "--since",
    type=click.DateTime(formats=DATETIME_FORMATS),
    help="Device's last sync time in UTC (default: last recorded sync)",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write the returned server changes to this JSON file",
)
@click.option("--verbose", "-v", is_flag=True, help="List returned server changes")
@click.pass_obj
def sync_delta(
    app: ExperienceCoreApp,
    user_id: str,
    device_id: str,
    changes_file: Path,
    since: Optional[datetime],
    output: Optional[Path],
    verbose: bool,
) -> None:
    """Apply a JSON list of changes from a device.

    CHANGES_FILE holds a JSON array of change objects with the fields
    id, type, resourceType, resourceId, data, timestamp, deviceId and version.

    Examples:
        experience-core sync delta USER_ID DEVICE_ID changes.json
        experience-core sync delta USER_ID DEVICE_ID changes.json --since 2024-01-01
    """
    try:
        raw_changes = json.loads(changes_file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise click.ClickException(f"Cannot read {changes_file}: {e}")
    if not isinstance(raw_changes, list):
        raise click.ClickException("Changes file must contain a JSON array")

    try:
        changes = app.sync_service.engine.validate_changes(raw_changes)
        if since is None:
            since = app.db_service.get_last_sync_time(user_id, device_id) or EPOCH
        result = app.sync_service.perform_delta_sync(
            user_id, device_id, since, changes
        )
    except CoreError as e:
        logger.error(f"Delta sync failed: {e}")
        console.print(f"\n[red]✗ Sync failed: {e}[/red]")
        raise click.ClickException(str(e))

    display_delta_sync_result(result, verbose=verbose)

    if output is not None:
        server_changes = [
            c.model_dump(mode="json", by_alias=True) for c in result.server_changes
        ]
        output.write_text(dumps(server_changes), encoding="utf-8")
        console.print(f"[dim]Server changes written to {output}[/dim]")


@sync.command(name="status")
@click.argument("user_id")
@click.pass_obj
def sync_status(app: ExperienceCoreApp, user_id: str) -> None:
    """Show the sync state of every device of a user."""
    try:
        statuses = app.sync_service.get_sync_status(user_id)
    except CoreError as e:
        raise click.ClickException(str(e))
    display_sync_status(statuses)


@sync.command(name="history")
@click.argument("user_id")
@click.argument("device_id")
@click.option("--page", default=1, show_default=True, type=click.IntRange(min=1))
@click.option("--limit", type=click.IntRange(min=1), help="Rows per page")
@click.pass_obj
def sync_history(
    app: ExperienceCoreApp,
    user_id: str,
    device_id: str,
    page: int,
    limit: Optional[int],
) -> None:
    """Show a device's sync history, newest first."""
    try:
        history = app.sync_service.get_sync_history(user_id, device_id, page, limit)
    except CoreError as e:
        raise click.ClickException(str(e))
    display_sync_history(history)
