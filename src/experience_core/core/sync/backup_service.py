"""Full-account backup snapshots and restore."""

import json
import logging
from typing import Any, Dict, List, Optional, Union

from ...database.service import DatabaseService
from ...exceptions import (
    InvalidArgumentError,
    NotFoundError,
    StorageFailureError,
    SyncFailureError,
)
from ...models import BackupInfo, BackupType, RestoreResult
from ...utils.logging_config import sync_log_context
from ...utils.serialization import dumps
from ...utils.timeutils import utcnow
from .locks import UserLockRegistry

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = "1.0"
SNAPSHOT_COLLECTIONS = ("contents", "annotations", "conversations")
SNAPSHOT_DOCUMENTS = ("preferences", "memory")


def count_snapshot_items(snapshot: Dict[str, Any]) -> int:
    """Count the items a snapshot carries.

    Every entry of the list collections counts once, each present document
    (preferences, memory) counts as a single item.
    """
    total = sum(len(snapshot.get(key) or []) for key in SNAPSHOT_COLLECTIONS)
    total += sum(1 for key in SNAPSHOT_DOCUMENTS if snapshot.get(key) is not None)
    return total


class BackupService:
    """Creates, lists and restores per-user backup snapshots."""

    def __init__(
        self, db_service: DatabaseService, locks: Optional[UserLockRegistry] = None
    ):
        """Initialize backup service.

        Args:
            db_service: Database service to snapshot from and restore into
            locks: Per-user lock registry shared with the sync engine
        """
        self.db_service = db_service
        self.locks = locks or UserLockRegistry()

    def collect_user_data(self, user_id: str) -> Dict[str, Any]:
        """Read everything a backup contains for a user."""
        return {
            "contents": self.db_service.get_all_user_contents(user_id),
            "annotations": self.db_service.get_all_user_annotations(user_id),
            "preferences": self.db_service.get_user_preferences(user_id),
            "memory": self.db_service.get_user_ai_memory(user_id),
            "conversations": self.db_service.get_user_conversations(user_id),
        }

    def create_backup(
        self, user_id: str, backup_type: Union[BackupType, str] = BackupType.MANUAL
    ) -> BackupInfo:
        """Snapshot a user's data.

        Args:
            user_id: Owner of the data
            backup_type: manual or automatic

        Returns:
            Metadata of the stored backup

        Raises:
            InvalidArgumentError: Unknown backup type
            SyncFailureError: Reading the data or storing the snapshot failed
        """
        try:
            backup_type = BackupType(backup_type)
        except ValueError as e:
            raise InvalidArgumentError(f"Unknown backup type: {backup_type}") from e

        logger.info("Creating %s backup for user %s", backup_type.value, user_id)

        try:
            self.db_service.get_user(user_id)
            snapshot = self.collect_user_data(user_id)
            data = dumps(snapshot)
            backup = BackupInfo(
                user_id=user_id,
                type=backup_type,
                size=len(data.encode("utf-8")),
                item_count=count_snapshot_items(snapshot),
                created_at=utcnow(),
                metadata={
                    "version": SNAPSHOT_VERSION,
                    "data_types": list(snapshot),
                    "content_count": len(snapshot["contents"]),
                    "annotation_count": len(snapshot["annotations"]),
                    "conversation_count": len(snapshot["conversations"]),
                },
            )
            self.db_service.save_backup(backup, data)
        except StorageFailureError as e:
            logger.error(f"Backup failed for user {user_id}: {e}")
            raise SyncFailureError(f"Backup creation failed: {e}") from e

        logger.info(
            "Created backup %s (%d items, %d bytes)",
            backup.id,
            backup.item_count,
            backup.size,
        )
        return backup

    def list_backups(self, user_id: str) -> List[BackupInfo]:
        """List a user's backups, newest first."""
        return self.db_service.list_backups(user_id)

    def restore_from_backup(self, user_id: str, backup_id: str) -> RestoreResult:
        """Write a backup's snapshot back into the stores.

        Items are restored one at a time; a failure partway leaves the items
        restored so far in place.

        Raises:
            NotFoundError: The user has no such backup
            SyncFailureError: The snapshot is unreadable or a write failed
        """
        try:
            if self.db_service.get_backup(user_id, backup_id) is None:
                raise NotFoundError("Backup", backup_id, user_id)
            raw = self.db_service.get_backup_data(user_id, backup_id)
        except StorageFailureError as e:
            logger.error(f"Could not read backup {backup_id}: {e}")
            raise SyncFailureError(f"Restore failed: {e}") from e

        try:
            snapshot = json.loads(raw)
        except json.JSONDecodeError as e:
            raise SyncFailureError(f"Backup {backup_id} is corrupt: {e}") from e

        logger.info("Restoring backup %s for user %s", backup_id, user_id)
        restored = 0

        with self.locks.hold(user_id), sync_log_context(user_id):
            try:
                for item in snapshot.get("contents") or []:
                    self.db_service.save_content(user_id, item)
                    restored += 1

                for item in snapshot.get("annotations") or []:
                    self.db_service.save_annotation(user_id, item)
                    restored += 1

                for item in snapshot.get("conversations") or []:
                    self.db_service.save_conversation(user_id, item)
                    restored += 1

                if snapshot.get("preferences") is not None:
                    self.db_service.update_user_preferences(
                        user_id, snapshot["preferences"]
                    )
                    restored += 1

                if snapshot.get("memory") is not None:
                    self.db_service.update_user_ai_memory(user_id, snapshot["memory"])
                    restored += 1
            except StorageFailureError as e:
                logger.error(
                    f"Restore of backup {backup_id} stopped after {restored} items: {e}"
                )
                raise SyncFailureError(f"Restore failed: {e}") from e

        logger.info("Restored %d items from backup %s", restored, backup_id)
        return RestoreResult(restored_items=restored)
