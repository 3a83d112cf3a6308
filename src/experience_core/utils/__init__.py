"""Shared utilities."""

from .logging_config import (
    configure_third_party_loggers,
    set_component_level,
    setup_logging,
    sync_log_context,
)
from .timeutils import EPOCH, to_naive_utc, utcnow

__all__ = [
    "EPOCH",
    "configure_third_party_loggers",
    "set_component_level",
    "setup_logging",
    "sync_log_context",
    "to_naive_utc",
    "utcnow",
]
