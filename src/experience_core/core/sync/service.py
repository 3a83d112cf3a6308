"""Unified sync service for the experience core.

This module provides the high-level SyncService that coordinates:
- SyncEngine: Full and delta sync
- ConflictResolver: Listing and resolving conflicts
- BackupService: Backup snapshots and restore
- SyncStatusReporter: Per-device sync state

All components share one per-user lock registry, so the operations of one
user never interleave.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Union

from ...config import Config
from ...database.service import DatabaseService
from ...models import (
    BackupInfo,
    BackupType,
    ConflictResolution,
    DeltaSyncResult,
    FullSyncResult,
    ResolveResult,
    RestoreResult,
    SyncChange,
    SyncConflict,
    SyncStatus,
)
from .applier import ChangeApplier
from .backup_service import BackupService
from .conflict_resolver import ConflictResolver
from .engine import SyncEngine
from .locks import UserLockRegistry
from .status_reporter import SyncStatusReporter

logger = logging.getLogger(__name__)


class SyncService:
    """Facade over the sync components for one database."""

    def __init__(self, config: Config, db_service: DatabaseService):
        """Initialize sync service.

        Args:
            config: Application configuration
            db_service: Database service instance
        """
        self.config = config
        self.db_service = db_service
        self.locks = UserLockRegistry(timeout=config.lock_timeout)

        applier = ChangeApplier(db_service)
        self.engine = SyncEngine(db_service, locks=self.locks, applier=applier)
        self.resolver = ConflictResolver(db_service, locks=self.locks, applier=applier)
        self.backups = BackupService(db_service, locks=self.locks)
        self.reporter = SyncStatusReporter(db_service)

    def perform_full_sync(self, user_id: str, device_id: str) -> FullSyncResult:
        """Run a full sync for a device."""
        return self.engine.perform_full_sync(user_id, device_id)

    def perform_delta_sync(
        self,
        user_id: str,
        device_id: str,
        last_sync_time: datetime,
        changes: Sequence[SyncChange],
    ) -> DeltaSyncResult:
        """Apply a device's changes and return the server changes it lacks."""
        return self.engine.perform_delta_sync(
            user_id, device_id, last_sync_time, changes
        )

    def list_conflicts(self, user_id: str) -> List[SyncConflict]:
        """List open conflicts for a user."""
        return self.resolver.list_conflicts(user_id)

    def resolve_conflict(
        self,
        user_id: str,
        conflict_id: str,
        resolution: Union[ConflictResolution, str],
        custom_data: Optional[Dict[str, Any]] = None,
    ) -> ResolveResult:
        """Resolve one conflict."""
        return self.resolver.resolve_conflict(
            user_id, conflict_id, resolution, custom_data
        )

    def create_backup(
        self, user_id: str, backup_type: Union[BackupType, str, None] = None
    ) -> BackupInfo:
        """Create a backup, defaulting to the configured backup type."""
        return self.backups.create_backup(
            user_id, backup_type or self.config.default_backup_type
        )

    def list_backups(self, user_id: str) -> List[BackupInfo]:
        """List a user's backups."""
        return self.backups.list_backups(user_id)

    def restore_from_backup(self, user_id: str, backup_id: str) -> RestoreResult:
        """Restore a backup."""
        return self.backups.restore_from_backup(user_id, backup_id)

    def get_sync_status(self, user_id: str) -> List[SyncStatus]:
        """Get the sync state of every device of a user."""
        return self.reporter.get_sync_status(user_id)

    def get_sync_history(
        self, user_id: str, device_id: str, page: int = 1, limit: Optional[int] = None
    ) -> Dict[str, Any]:
        """Get a page of a device's sync history."""
        return self.db_service.get_sync_history(
            user_id, device_id, page, limit or self.config.history_page_size
        )
