"""Full and delta synchronization between devices and the server store."""

import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from ...database.models import SyncRunStatus, SyncType
from ...database.service import DatabaseService
from ...exceptions import (
    ApplyFailureError,
    CoreError,
    InvalidArgumentError,
    StorageFailureError,
    SyncFailureError,
    VersionConflictError,
)
from ...models import (
    ChangeType,
    ConflictType,
    DeltaSyncResult,
    FullSyncResult,
    ResourceType,
    SyncChange,
    SyncConflict,
)
from ...utils.logging_config import sync_log_context
from ...utils.serialization import jsonable
from ...utils.timeutils import to_naive_utc, utcnow
from .applier import ChangeApplier
from .backup_service import count_snapshot_items
from .locks import UserLockRegistry

logger = logging.getLogger(__name__)


class SyncEngine:
    """Runs full and delta syncs for a user's devices.

    A delta sync applies the device's changes in order. A change conflicts
    when the server log holds a change to the same resource that is newer
    than the device's last sync and newer than the change itself. Conflicting
    changes are stored as SyncConflict records instead of being applied.
    """

    def __init__(
        self,
        db_service: DatabaseService,
        locks: Optional[UserLockRegistry] = None,
        applier: Optional[ChangeApplier] = None,
    ):
        """Initialize sync engine.

        Args:
            db_service: Database service holding resources and the change log
            locks: Per-user lock registry; share it with the conflict resolver
            applier: Change applier, built from db_service when omitted
        """
        self.db_service = db_service
        self.locks = locks or UserLockRegistry()
        self.applier = applier or ChangeApplier(db_service)

    # =========================================================================
    # Full sync
    # =========================================================================

    def perform_full_sync(self, user_id: str, device_id: str) -> FullSyncResult:
        """Run a full sync for a device.

        Reads every syncable resource of the user, records conflicts for
        resources whose latest logged change is a delete, and records the
        run in the device's sync history.

        Raises:
            NotFoundError: Unknown device
            SyncFailureError: A storage read or write failed
        """
        start = time.monotonic()
        logger.info(f"Starting full sync for user {user_id}, device {device_id}")

        with self.locks.hold(user_id), sync_log_context(user_id, device_id):
            try:
                self.db_service.get_device(user_id, device_id)
                snapshot = {
                    "contents": self.db_service.get_all_user_contents(user_id),
                    "annotations": self.db_service.get_all_user_annotations(user_id),
                    "preferences": self.db_service.get_user_preferences(user_id),
                    "memory": self.db_service.get_user_ai_memory(user_id),
                }
                conflicts = self._find_deleted_but_present(
                    user_id, snapshot["contents"], snapshot["annotations"]
                )
                for conflict in conflicts:
                    self.db_service.save_conflict(user_id, conflict)

                synced_items = count_snapshot_items(snapshot)
                now = utcnow()
                self.db_service.update_last_sync_time(
                    user_id,
                    device_id,
                    now,
                    sync_type=SyncType.FULL,
                    status=SyncRunStatus.COMPLETED,
                    synced_items=synced_items,
                    conflicts=len(conflicts),
                )
            except StorageFailureError as e:
                logger.error(f"Full sync failed for device {device_id}: {e}")
                raise SyncFailureError(f"Full sync failed: {e}") from e

        logger.info(
            "Full sync completed in %.3fs: %d items, %d conflicts",
            time.monotonic() - start,
            synced_items,
            len(conflicts),
        )
        return FullSyncResult(
            synced_items=synced_items, conflicts=len(conflicts), timestamp=now
        )

    def _find_deleted_but_present(
        self,
        user_id: str,
        contents: Sequence[Dict[str, Any]],
        annotations: Sequence[Dict[str, Any]],
    ) -> List[SyncConflict]:
        """Find stored resources whose latest logged change deleted them.

        Resources that already carry an open conflict are skipped, so running
        full sync again does not duplicate conflicts.
        """
        conflicts = []
        for resource_type, items in (
            (ResourceType.CONTENT, contents),
            (ResourceType.ANNOTATION, annotations),
        ):
            for item in items:
                latest = self.db_service.get_latest_change(
                    user_id, resource_type, item["id"]
                )
                if latest is None or latest.type != ChangeType.DELETE:
                    continue
                if self.db_service.has_open_conflict(user_id, resource_type, item["id"]):
                    continue
                conflicts.append(
                    SyncConflict(
                        resource_type=resource_type,
                        resource_id=item["id"],
                        local_version=jsonable(item),
                        remote_version=None,
                        conflict_type=ConflictType.DELETE_UPDATE,
                    )
                )
        return conflicts

    # =========================================================================
    # Delta sync
    # =========================================================================

    def perform_delta_sync(
        self,
        user_id: str,
        device_id: str,
        last_sync_time: datetime,
        changes: Sequence[SyncChange],
    ) -> DeltaSyncResult:
        """Apply a device's changes and return what it has not seen yet.

        Args:
            user_id: Owner of the device
            device_id: Device submitting the changes
            last_sync_time: When the device last synced successfully
            changes: Local changes, in the order the device made them

        Returns:
            DeltaSyncResult with applied, conflicting and failed counts plus
            the server changes since last_sync_time from other devices

        Raises:
            NotFoundError: Unknown device
            SyncFailureError: Reading the change log or recording the run failed
        """
        start = time.monotonic()
        last_sync_time = to_naive_utc(last_sync_time)
        logger.info(
            f"Starting delta sync for device {device_id}: "
            f"{len(changes)} local changes since {last_sync_time.isoformat()}"
        )

        result = DeltaSyncResult()

        with self.locks.hold(user_id), sync_log_context(user_id, device_id):
            # Read the log under the lock so no other device slips in between
            try:
                self.db_service.get_device(user_id, device_id)
                remote_changes = self.db_service.get_changes_after(
                    user_id, last_sync_time
                )
            except StorageFailureError as e:
                raise SyncFailureError(f"Delta sync failed: {e}") from e

            for change in changes:
                if change.device_id != device_id:
                    logger.debug(
                        "Change %s names device %s, attributing to %s",
                        change.id,
                        change.device_id,
                        device_id,
                    )
                    change = change.model_copy(update={"device_id": device_id})

                try:
                    conflict = self._apply_change_to_server(
                        user_id, change, remote_changes, last_sync_time
                    )
                except ApplyFailureError as e:
                    result.failed_changes += 1
                    logger.error(str(e))
                    continue

                if conflict is not None:
                    result.conflicts += 1
                else:
                    result.applied_changes += 1

        # Changes made by the calling device are already on it
        result.server_changes = [
            rc for rc in remote_changes if rc.device_id != device_id
        ]
        result.timestamp = utcnow()

        status = (
            SyncRunStatus.PARTIAL if result.failed_changes else SyncRunStatus.COMPLETED
        )
        try:
            self.db_service.update_last_sync_time(
                user_id,
                device_id,
                result.timestamp,
                sync_type=SyncType.DELTA,
                status=status,
                synced_items=result.applied_changes,
                conflicts=result.conflicts,
            )
        except StorageFailureError as e:
            raise SyncFailureError(f"Could not record delta sync: {e}") from e

        logger.info(
            "Delta sync completed in %.3fs: %d applied, %d conflicts, %d failed, "
            "%d server changes",
            time.monotonic() - start,
            result.applied_changes,
            result.conflicts,
            result.failed_changes,
            len(result.server_changes),
        )
        return result

    def _apply_change_to_server(
        self,
        user_id: str,
        change: SyncChange,
        remote_changes: Sequence[SyncChange],
        last_sync_time: datetime,
    ) -> Optional[SyncConflict]:
        """Apply one local change, or record the conflict that blocks it.

        A change resubmitted by a retried batch is recognised by its id,
        whether it was applied or recorded as a conflict the first time.

        Returns:
            The conflict blocking the change, or None when it was applied

        Raises:
            ApplyFailureError: The change could neither be applied nor
                recorded as a conflict
        """
        try:
            if self.db_service.has_change(user_id, change.id):
                logger.debug("Change %s already applied, skipping", change.id)
                return None

            existing = self.db_service.get_conflict_for_change(user_id, change.id)
            if existing is not None:
                logger.debug(
                    "Change %s already blocked by conflict %s", change.id, existing.id
                )
                return existing

            expected_version = self.applier.current_version(user_id, change)

            conflicting = self.find_conflicting_change(change, remote_changes)
            if conflicting is not None:
                logger.warning(
                    f"Conflict for {change}: newer server change {conflicting.id}"
                )
                return self._record_conflict(user_id, change, conflicting.data)

            try:
                newer = self.apply_change(
                    user_id,
                    change,
                    expected_version=expected_version,
                    since=last_sync_time,
                )
            except VersionConflictError as e:
                logger.warning(f"Lost write race for {change}: {e}")
                return self._record_conflict(
                    user_id, change, self.applier.current_state(user_id, change)
                )
            if newer is not None:
                logger.warning(
                    f"Conflict for {change}: change {newer.id} logged during sync"
                )
                return self._record_conflict(user_id, change, newer.data)
        except CoreError as e:
            raise ApplyFailureError(change.id, str(e)) from e
        return None

    def _record_conflict(
        self,
        user_id: str,
        change: SyncChange,
        remote_version: Optional[Dict[str, Any]],
    ) -> SyncConflict:
        conflict = SyncConflict(
            resource_type=change.resource_type,
            resource_id=change.resource_id,
            local_version=change.data,
            remote_version=remote_version,
            conflict_type=ConflictType.CONCURRENT_UPDATE,
            change_id=change.id,
        )
        self.db_service.save_conflict(user_id, conflict)
        return conflict

    @staticmethod
    def find_conflicting_change(
        change: SyncChange, remote_changes: Sequence[SyncChange]
    ) -> Optional[SyncChange]:
        """First server change to the same resource that is newer than ``change``."""
        for remote in remote_changes:
            if (
                remote.resource_type == change.resource_type
                and remote.resource_id == change.resource_id
                and remote.timestamp > change.timestamp
            ):
                return remote
        return None

    def apply_change(
        self,
        user_id: str,
        change: SyncChange,
        expected_version: Optional[int] = None,
        since: Optional[datetime] = None,
    ) -> Optional[SyncChange]:
        """Apply a change and append it to the log in one transaction.

        When ``since`` is given, the log is checked again inside the write
        transaction. A change to the same resource from another device, newer
        than both ``since`` and ``change``, blocks the write. This catches
        writers outside this process that the user lock cannot see.

        Returns:
            The blocking change, or None when the change was written

        Raises:
            InvalidArgumentError: Invalid payload for the resource type
            VersionConflictError: The resource moved past expected_version
            StorageFailureError: The write failed
        """
        with self.db_service.session_scope() as session:
            if since is not None:
                newer = self.db_service.get_newer_change(
                    user_id,
                    change.resource_type,
                    change.resource_id,
                    max(since, change.timestamp),
                    exclude_device_id=change.device_id,
                    session=session,
                )
                if newer is not None:
                    return newer
            self.applier.apply(
                user_id, change, expected_version=expected_version, session=session
            )
            self.db_service.append_change(user_id, change, session=session)
        return None

    def validate_changes(self, raw_changes: Sequence[Dict[str, Any]]) -> List[SyncChange]:
        """Parse raw change mappings submitted by a device.

        Raises:
            InvalidArgumentError: A change is malformed
        """
        parsed = []
        for index, raw in enumerate(raw_changes):
            try:
                parsed.append(SyncChange.model_validate(raw))
            except ValueError as e:
                raise InvalidArgumentError(f"Change #{index} is invalid: {e}") from e
        return parsed
