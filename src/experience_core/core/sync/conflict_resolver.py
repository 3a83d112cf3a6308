"""Resolution of stored sync conflicts.

A conflict is resolved by choosing the payload that should win:
- use_local: the version the device submitted
- use_remote: the version that was on the server
- merge: shallow field merge of both, local fields win
- custom: caller-supplied data

The chosen payload is applied as a new change from the ``system`` device,
logged, and the conflict record is removed, all in one transaction.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from ...database.service import DatabaseService
from ...exceptions import (
    InvalidArgumentError,
    NotFoundError,
    StorageFailureError,
    SyncFailureError,
)
from ...models import (
    ChangeType,
    ConflictResolution,
    ResolveResult,
    SyncChange,
    SyncConflict,
)
from ...utils.logging_config import sync_log_context
from .applier import ChangeApplier
from .locks import UserLockRegistry

logger = logging.getLogger(__name__)

SYSTEM_DEVICE_ID = "system"


class ConflictResolver:
    """Lists and resolves a user's open conflicts."""

    def __init__(
        self,
        db_service: DatabaseService,
        locks: Optional[UserLockRegistry] = None,
        applier: Optional[ChangeApplier] = None,
    ):
        """Initialize conflict resolver.

        Args:
            db_service: Database service for conflict records and resources
            locks: Per-user lock registry shared with the sync engine
            applier: Change applier, built from db_service when omitted
        """
        self.db_service = db_service
        self.locks = locks or UserLockRegistry()
        self.applier = applier or ChangeApplier(db_service)

    def list_conflicts(self, user_id: str) -> List[SyncConflict]:
        """List open conflicts for a user, newest first."""
        return self.db_service.get_user_conflicts(user_id)

    @staticmethod
    def merge_versions(
        local: Optional[Dict[str, Any]], remote: Optional[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Shallow merge: every remote field, overridden by local fields."""
        return {**(remote or {}), **(local or {})}

    def choose_payload(
        self,
        conflict: SyncConflict,
        resolution: ConflictResolution,
        custom_data: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Pick the winning payload for a resolution strategy.

        Returns:
            Winning payload; None means the resource should be deleted

        Raises:
            InvalidArgumentError: custom resolution without custom_data
        """
        if resolution == ConflictResolution.USE_LOCAL:
            return conflict.local_version
        if resolution == ConflictResolution.USE_REMOTE:
            return conflict.remote_version
        if resolution == ConflictResolution.MERGE:
            return self.merge_versions(conflict.local_version, conflict.remote_version)

        if custom_data is None:
            raise InvalidArgumentError("Custom resolution requires custom data")
        return custom_data

    def resolve_conflict(
        self,
        user_id: str,
        conflict_id: str,
        resolution: Union[ConflictResolution, str],
        custom_data: Optional[Dict[str, Any]] = None,
    ) -> ResolveResult:
        """Resolve one conflict.

        Args:
            user_id: Owner of the conflict
            conflict_id: Conflict to resolve
            resolution: Strategy name or enum member
            custom_data: Payload for the custom strategy

        Returns:
            ResolveResult for the resolved conflict

        Raises:
            InvalidArgumentError: Unknown strategy, missing custom data or a
                winning payload that is invalid for the resource type
            NotFoundError: The user has no such conflict
            SyncFailureError: Storage failed; nothing was changed
        """
        try:
            resolution = ConflictResolution(resolution)
        except ValueError as e:
            raise InvalidArgumentError(
                f"Unknown conflict resolution: {resolution}"
            ) from e

        with self.locks.hold(user_id), sync_log_context(user_id):
            try:
                conflict = self.db_service.get_conflict(user_id, conflict_id)
                if conflict is None:
                    raise NotFoundError("Conflict", conflict_id, user_id)

                payload = self.choose_payload(conflict, resolution, custom_data)
                change = SyncChange(
                    type=ChangeType.DELETE if payload is None else ChangeType.UPDATE,
                    resource_type=conflict.resource_type,
                    resource_id=conflict.resource_id,
                    data=payload,
                    device_id=SYSTEM_DEVICE_ID,
                    version=1,
                )

                with self.db_service.session_scope() as session:
                    self.applier.apply(user_id, change, session=session)
                    self.db_service.append_change(user_id, change, session=session)
                    if not self.db_service.delete_conflict(
                        user_id, conflict_id, session=session
                    ):
                        raise NotFoundError("Conflict", conflict_id, user_id)
            except StorageFailureError as e:
                logger.error(f"Failed to resolve conflict {conflict_id}: {e}")
                raise SyncFailureError(f"Conflict resolution failed: {e}") from e

        logger.info(
            "Resolved conflict %s (%s) with %s", conflict_id, conflict, resolution.value
        )
        return ResolveResult(conflict_id=conflict_id, resolution=resolution)
