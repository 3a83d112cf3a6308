"""Conflict listing and resolution commands."""

import json
import logging
from typing import Optional

import click
from rich.console import Console

from ...exceptions import CoreError
from ...models import ConflictResolution
from ..app import ExperienceCoreApp
from ..display import display_conflicts

console = Console()
logger = logging.getLogger(__name__)


@click.group("conflict")
def conflict() -> None:
    """Inspect and resolve sync conflicts."""
    pass


@conflict.command(name="list")
@click.argument("user_id")
@click.option("--verbose", "-v", is_flag=True, help="Show both versions")
@click.pass_obj
def conflict_list(app: ExperienceCoreApp, user_id: str, verbose: bool) -> None:
    """List a user's open conflicts."""
    try:
        conflicts = app.sync_service.list_conflicts(user_id)
    except CoreError as e:
        raise click.ClickException(str(e))
    display_conflicts(conflicts, verbose=verbose)


@conflict.command(name="resolve")
@click.argument("user_id")
@click.argument("conflict_id")
@click.argument(
    "strategy", type=click.Choice([r.value for r in ConflictResolution])
)
@click.option(
    "--data",
    "custom_json",
    help="JSON object to store when STRATEGY is custom",
)
@click.pass_obj
def conflict_resolve(
    app: ExperienceCoreApp,
    user_id: str,
    conflict_id: str,
    strategy: str,
    custom_json: Optional[str],
) -> None:
    """Resolve a conflict with use_local, use_remote, merge or custom.

    Examples:
        experience-core conflict resolve USER_ID CONFLICT_ID merge
        experience-core conflict resolve USER_ID CONFLICT_ID custom --data '{"title": "x"}'
    """
    custom_data = None
    if custom_json is not None:
        try:
            custom_data = json.loads(custom_json)
        except json.JSONDecodeError as e:
            raise click.BadParameter(str(e), param_hint="--data")

    try:
        result = app.sync_service.resolve_conflict(
            user_id, conflict_id, strategy, custom_data
        )
    except CoreError as e:
        console.print(f"[red]✗[/red] Resolution failed: {e}")
        raise click.ClickException(str(e))

    console.print(
        f"[green]✓ Resolved conflict {result.conflict_id} "
        f"with {result.resolution.value}[/green]"
    )
