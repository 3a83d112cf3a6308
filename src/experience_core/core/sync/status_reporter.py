"""Per-device sync status."""

import logging
from typing import List

from ...database.service import DatabaseService
from ...exceptions import StorageFailureError
from ...models import DeviceSyncState, SyncStatus
from ...utils.timeutils import EPOCH

logger = logging.getLogger(__name__)


class SyncStatusReporter:
    """Derives the sync state of each of a user's devices."""

    def __init__(self, db_service: DatabaseService):
        self.db_service = db_service

    @staticmethod
    def derive_state(pending_changes: int, conflict_count: int) -> DeviceSyncState:
        """Conflicts take precedence over pending changes."""
        if conflict_count > 0:
            return DeviceSyncState.CONFLICT
        if pending_changes > 0:
            return DeviceSyncState.PENDING
        return DeviceSyncState.SYNCED

    def get_sync_status(self, user_id: str) -> List[SyncStatus]:
        """Get one SyncStatus per registered device of the user.

        A device whose counters cannot be read is reported with the
        ``error`` state rather than failing the whole report.
        """
        devices = self.db_service.get_user_devices(user_id)
        conflict_count = self.db_service.get_conflicts_count(user_id)

        statuses = []
        for device in devices:
            try:
                last_sync = self.db_service.get_last_sync_time(user_id, device.id)
                pending = self.db_service.get_pending_changes_count(user_id, device.id)
            except StorageFailureError as e:
                logger.error(f"Could not read sync state of device {device.id}: {e}")
                statuses.append(
                    SyncStatus(
                        user_id=user_id,
                        device_id=device.id,
                        status=DeviceSyncState.ERROR,
                        conflict_count=conflict_count,
                    )
                )
                continue

            statuses.append(
                SyncStatus(
                    user_id=user_id,
                    device_id=device.id,
                    last_sync_time=last_sync or EPOCH,
                    status=self.derive_state(pending, conflict_count),
                    pending_changes=pending,
                    conflict_count=conflict_count,
                )
            )

        logger.debug("Reported sync status for %d devices", len(statuses))
        return statuses
