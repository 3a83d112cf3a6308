"""User and device registry commands."""

import json
import logging
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from ...exceptions import CoreError
from ..app import ExperienceCoreApp

console = Console()
logger = logging.getLogger(__name__)


@click.group("user")
def user() -> None:
    """Manage users."""
    pass


@user.command(name="create")
@click.argument("email")
@click.argument("name")
@click.option("--id", "user_id", help="Explicit user id (generated if omitted)")
@click.pass_obj
def user_create(
    app: ExperienceCoreApp, email: str, name: str, user_id: Optional[str]
) -> None:
    """Create a user.

    Examples:
        experience-core user create alice@example.com "Alice"
    """
    try:
        created = app.db_service.create_user(email, name, user_id=user_id)
    except CoreError as e:
        raise click.ClickException(str(e))
    console.print(f"[green]✓ Created user {created.email}[/green] (ID: {created.id})")


@user.command(name="show")
@click.argument("user_id")
@click.pass_obj
def user_show(app: ExperienceCoreApp, user_id: str) -> None:
    """Show a user and their preferences."""
    try:
        found = app.db_service.get_user(user_id)
        memory = app.db_service.get_user_ai_memory(user_id)
    except CoreError as e:
        raise click.ClickException(str(e))

    console.print(f"\n[bold cyan]{found.name}[/bold cyan] <{found.email}>")
    console.print(f"  ID: {found.id}")
    console.print(f"  Preferences: {json.dumps(found.preferences or {})}")
    console.print(f"  AI memory keys: {len(memory)}")


@click.group("device")
def device() -> None:
    """Manage a user's devices."""
    pass


@device.command(name="register")
@click.argument("user_id")
@click.option("--name", required=True, help="Device display name")
@click.option("--type", "device_type", default="desktop", show_default=True)
@click.option("--platform", required=True, help="Platform, e.g. macos or ios")
@click.option("--version", "app_version", required=True, help="Client version")
@click.option("--id", "device_id", help="Explicit device id (generated if omitted)")
@click.pass_obj
def device_register(
    app: ExperienceCoreApp,
    user_id: str,
    name: str,
    device_type: str,
    platform: str,
    app_version: str,
    device_id: Optional[str],
) -> None:
    """Register a device for a user.

    Examples:
        experience-core device register USER_ID --name Laptop --platform macos --version 1.0.0
    """
    try:
        registered = app.db_service.register_device(
            user_id, device_type, platform, app_version, name, device_id=device_id
        )
    except CoreError as e:
        raise click.ClickException(str(e))
    console.print(
        f"[green]✓ Registered device {registered.name}[/green] (ID: {registered.id})"
    )


@device.command(name="list")
@click.argument("user_id")
@click.pass_obj
def device_list(app: ExperienceCoreApp, user_id: str) -> None:
    """List a user's devices."""
    try:
        devices = app.db_service.get_user_devices(user_id)
    except CoreError as e:
        raise click.ClickException(str(e))

    if not devices:
        console.print("[yellow]No devices registered[/yellow]")
        return

    table = Table(title="Devices", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Platform")
    table.add_column("Online")
    table.add_column("Last Seen")

    for d in devices:
        table.add_row(
            d.id,
            d.name,
            d.type,
            f"{d.platform} {d.version}",
            "[green]yes[/green]" if d.is_online else "no",
            d.last_seen.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)


@device.command(name="status")
@click.argument("device_id")
@click.option("--online/--offline", default=True, help="New online state")
@click.pass_obj
def device_status(app: ExperienceCoreApp, device_id: str, online: bool) -> None:
    """Mark a device online or offline."""
    try:
        app.db_service.update_device_status(device_id, online)
    except CoreError as e:
        raise click.ClickException(str(e))
    console.print(
        f"[green]✓ Device {device_id} is {'online' if online else 'offline'}[/green]"
    )
