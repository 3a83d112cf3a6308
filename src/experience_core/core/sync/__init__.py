"""Synchronization module.

Handles full and delta sync, conflict resolution, backups and sync status.
"""

from .applier import ChangeApplier
from .backup_service import BackupService, count_snapshot_items
from .conflict_resolver import SYSTEM_DEVICE_ID, ConflictResolver
from .engine import SyncEngine
from .locks import UserLockRegistry
from .service import SyncService
from .status_reporter import SyncStatusReporter

__all__ = [
    # Engine
    "ChangeApplier",
    "SyncEngine",
    "UserLockRegistry",
    # Conflict resolution
    "ConflictResolver",
    "SYSTEM_DEVICE_ID",
    # Backups
    "BackupService",
    "count_snapshot_items",
    # Status
    "SyncStatusReporter",
    # Facade
    "SyncService",
]
