"""Backup and restore commands."""

import logging
from typing import Optional

import click
from rich.console import Console

from ...exceptions import CoreError
from ...models import BackupType
from ..app import ExperienceCoreApp
from ..display import display_backups

console = Console()
logger = logging.getLogger(__name__)


@click.group("backup")
def backup() -> None:
    """Create, list and restore backups."""
    pass


@backup.command(name="create")
@click.argument("user_id")
@click.option(
    "--type",
    "backup_type",
    type=click.Choice([t.value for t in BackupType]),
    help="Backup type (default from configuration)",
)
@click.pass_obj
def backup_create(
    app: ExperienceCoreApp, user_id: str, backup_type: Optional[str]
) -> None:
    """Snapshot all of a user's data."""
    try:
        info = app.sync_service.create_backup(user_id, backup_type)
    except CoreError as e:
        raise click.ClickException(str(e))
    console.print(
        f"[green]✓ Backup {info.id} created[/green] "
        f"({info.item_count} items, {info.size:,} bytes)"
    )


@backup.command(name="list")
@click.argument("user_id")
@click.pass_obj
def backup_list(app: ExperienceCoreApp, user_id: str) -> None:
    """List a user's backups, newest first."""
    try:
        backups = app.sync_service.list_backups(user_id)
    except CoreError as e:
        raise click.ClickException(str(e))
    display_backups(backups)


@backup.command(name="restore")
@click.argument("user_id")
@click.argument("backup_id")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_obj
def backup_restore(
    app: ExperienceCoreApp, user_id: str, backup_id: str, yes: bool
) -> None:
    """Write a backup back over the user's current data."""
    if not yes:
        click.confirm(
            f"Restore backup {backup_id}? Existing items with the same ids "
            "will be overwritten",
            abort=True,
        )

    try:
        result = app.sync_service.restore_from_backup(user_id, backup_id)
    except CoreError as e:
        logger.error(f"Restore failed: {e}")
        raise click.ClickException(str(e))
    console.print(f"[green]✓ Restored {result.restored_items} items[/green]")
