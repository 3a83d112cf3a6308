"""Experience Core.

Sync and conflict-resolution backend for personal content, annotations,
preferences and AI memory shared across a user's devices.
"""

__version__ = "1.0.0"
__author__ = "Experience Core developers"
__email__ = ""

from .config import Config
from .core.sync import SyncService
from .database import DatabaseService
from .exceptions import (
    ApplyFailureError,
    CoreError,
    InvalidArgumentError,
    NotFoundError,
    StorageFailureError,
    SyncFailureError,
    VersionConflictError,
)
from .models import SyncChange, SyncConflict

__all__ = [
    "Config",
    "DatabaseService",
    "SyncService",
    "SyncChange",
    "SyncConflict",
    "CoreError",
    "ApplyFailureError",
    "InvalidArgumentError",
    "NotFoundError",
    "StorageFailureError",
    "SyncFailureError",
    "VersionConflictError",
]
