"""Command-line interface for the experience core.

This is the main entry point that delegates to command modules.
"""

from pathlib import Path
from typing import Any, Optional

import click

from ..utils.logging_config import (
    configure_third_party_loggers,
    set_component_level,
    setup_logging,
)
from .app import ExperienceCoreApp
from .commands import backup, conflict, db, device, sync, user


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
    help="Set logging level (default: EXPERIENCE_CORE_LOG_LEVEL or INFO)",
)
@click.option("--log-file", type=click.Path(), help="Log to file")
@click.option(
    "--debug-sync",
    is_flag=True,
    help="Log sync engine, conflict and backup steps at DEBUG level",
)
@click.option(
    "--database",
    type=click.Path(dir_okay=False),
    help="SQLite database file (overrides EXPERIENCE_CORE_DATABASE_PATH)",
)
@click.pass_context
def cli(
    ctx: Any,
    log_level: Optional[str],
    log_file: Optional[str],
    debug_sync: bool,
    database: Optional[str],
) -> None:
    """Experience Core.

    Multi-device sync, conflict resolution and backups for personal content.
    """
    config_override = {}
    if database:
        config_override["database_path"] = Path(database)

    app = ExperienceCoreApp(config_override)

    # Set up logging
    setup_logging(
        log_level=log_level or app.config.log_level,
        log_file=Path(log_file) if log_file else app.config.log_file,
    )
    configure_third_party_loggers()
    if debug_sync:
        set_component_level("sync", "DEBUG")

    ctx.obj = app
    ctx.call_on_close(app.close)


# Register command groups
cli.add_command(db)
cli.add_command(user)
cli.add_command(device)
cli.add_command(sync)
cli.add_command(conflict)
cli.add_command(backup)


if __name__ == "__main__":
    cli()
