"""CLI command modules."""

from .backups import backup
from .conflicts import conflict
from .database import db
from .sync import sync
from .users import device, user

__all__ = [
    "backup",
    "conflict",
    "db",
    "device",
    "sync",
    "user",
]
