"""Logging configuration for the experience core.

Console and file output carry a sync tag next to the source location:
``user`` or ``user/device`` while a sync, restore or conflict resolution
runs for that user, ``-`` otherwise.
"""

import logging
import logging.handlers
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Iterator, Optional

APP_LOGGER = "experience_core"

# Parts of the application whose level can be changed on their own
LOG_COMPONENTS = {
    "sync": f"{APP_LOGGER}.core.sync",
    "database": f"{APP_LOGGER}.database",
    "cli": f"{APP_LOGGER}.cli",
}

NO_SYNC_TAG = "-"

_sync_tag: ContextVar[str] = ContextVar("sync_tag", default=NO_SYNC_TAG)


@contextmanager
def sync_log_context(user_id: str, device_id: Optional[str] = None) -> Iterator[None]:
    """Tag records logged inside the block with the user and device."""
    token = _sync_tag.set(f"{user_id}/{device_id}" if device_id else user_id)
    try:
        yield
    finally:
        _sync_tag.reset(token)


def current_sync_tag() -> str:
    """Tag of the sync running in this context, ``-`` when none."""
    return _sync_tag.get()


class SyncFormatter(logging.Formatter):
    """Formatter that adds ``location`` and ``sync`` fields to each record."""

    def format(self, record: Any) -> str:
        """Format log record with location and sync tag."""
        record.location = f"{record.filename}:{record.lineno}"
        record.sync = current_sync_tag()
        return super().format(record)


class ColoredFormatter(SyncFormatter):
    """Colored log formatter for console output."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",
    }

    def format(self, record: Any) -> str:
        """Format log record with colors."""
        log_color = self.COLORS.get(record.levelname, self.COLORS["RESET"])
        reset_color = self.COLORS["RESET"]

        # Other handlers share the record
        original_levelname = record.levelname
        record.levelname = f"{log_color}{original_levelname:<8}{reset_color}"
        try:
            return super().format(record)
        finally:
            record.levelname = original_levelname


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[Path] = None,
    console_output: bool = True,
    max_file_size: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
) -> None:
    """Set up application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file
        console_output: Whether to output logs to console
        max_file_size: Maximum size of log file before rotation
        backup_count: Number of backup log files to keep
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(
            ColoredFormatter(
                fmt="%(asctime)s - %(location)-24s - %(levelname)s - "
                "[%(sync)s] %(message)s",
                datefmt="%H:%M:%S",
            )
        )
        root_logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=max_file_size, backupCount=backup_count
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(
            SyncFormatter(
                fmt="%(asctime)s - %(location)-24s - %(levelname)-8s - "
                "[%(sync)s] %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        root_logger.addHandler(file_handler)

    logger = logging.getLogger(__name__)
    logger.info("Logging initialized - Level: %s", log_level)
    if log_file:
        logger.info("Log file: %s", log_file)


def set_component_level(component: str, level: str) -> None:
    """Change the log level of one application component.

    Only the component's loggers change; the rest of the application and
    third-party libraries keep the root level. Handlers are lowered when
    needed so the component's records get through.

    Args:
        component: One of LOG_COMPONENTS (sync, database, cli)
        level: New log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Raises:
        ValueError: Unknown component
    """
    if component not in LOG_COMPONENTS:
        raise ValueError(
            f"Unknown log component: {component} "
            f"(expected one of {', '.join(sorted(LOG_COMPONENTS))})"
        )
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    logging.getLogger(LOG_COMPONENTS[component]).setLevel(numeric_level)
    for handler in logging.getLogger().handlers:
        if handler.level > numeric_level:
            handler.setLevel(numeric_level)

    logging.getLogger(__name__).debug(
        "Log level of %s changed to %s", LOG_COMPONENTS[component], level
    )


def configure_third_party_loggers() -> None:
    """Configure third-party library loggers to reduce noise."""
    for name in (
        "sqlalchemy",
        "sqlalchemy.engine",
        "sqlalchemy.pool",
        "sqlalchemy.orm",
        "alembic",
    ):
        logging.getLogger(name).setLevel(logging.WARNING)
