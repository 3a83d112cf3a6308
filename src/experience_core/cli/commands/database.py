"""Database maintenance commands."""

import logging

import click
from rich.console import Console

from ...exceptions import CoreError
from ..app import ExperienceCoreApp
from ..display import display_statistics

console = Console()
logger = logging.getLogger(__name__)


@click.group("db")
def db() -> None:
    """Database maintenance commands."""
    pass


@db.command(name="init")
@click.pass_obj
def db_init(app: ExperienceCoreApp) -> None:
    """Create the database schema if it does not exist.

    Examples:
        experience-core db init
        experience-core --database ./core.db db init
    """
    db_service = app.db_service
    if db_service.is_initialized():
        console.print(f"[green]✓ Database ready at {db_service.db_path}[/green]")
        return

    try:
        db_service.init_db()
    except Exception as e:
        logger.exception("Database initialization failed")
        raise click.ClickException(str(e))

    console.print(f"[green]✓ Database created at {db_service.db_path}[/green]")


@db.command(name="migrate")
@click.pass_obj
def db_migrate(app: ExperienceCoreApp) -> None:
    """Upgrade the database schema to the latest migration."""
    console.print("\n[bold cyan]Running migrations...[/bold cyan]")
    app.db_service.run_migrations()
    console.print("[green]✓ Done[/green]")


@db.command(name="stats")
@click.pass_obj
def db_stats(app: ExperienceCoreApp) -> None:
    """Show row counts for every table."""
    try:
        stats = app.db_service.get_statistics()
    except CoreError as e:
        raise click.ClickException(str(e))

    console.print(f"\n[bold cyan]📊 Database: {app.db_service.db_path}[/bold cyan]\n")
    display_statistics(stats)
