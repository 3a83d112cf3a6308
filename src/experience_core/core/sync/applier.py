"""Apply sync changes to the resource stores.

Content and annotation changes create, replace or delete a single row.
Preference and memory changes replace the whole document; a delete resets
it to an empty mapping.
"""

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from ...database.service import DatabaseService
from ...exceptions import InvalidArgumentError
from ...models import ChangeType, ResourceType, SyncChange

logger = logging.getLogger(__name__)


class ChangeApplier:
    """Writes a SyncChange through the store that owns its resource type."""

    def __init__(self, db_service: DatabaseService):
        """Initialize change applier.

        Args:
            db_service: Database service owning the resource stores
        """
        self.db_service = db_service

    def current_version(self, user_id: str, change: SyncChange) -> Optional[int]:
        """Stored version of the resource a change targets.

        Returns:
            Version number (0 if absent) for versioned resources, None for
            preference and memory documents which are not versioned
        """
        if change.resource_type == ResourceType.CONTENT:
            return self.db_service.get_content_version(user_id, change.resource_id)
        if change.resource_type == ResourceType.ANNOTATION:
            return self.db_service.get_annotation_version(user_id, change.resource_id)
        return None

    def current_state(self, user_id: str, change: SyncChange) -> Optional[Dict[str, Any]]:
        """Stored payload of the resource a change targets, if any."""
        if change.resource_type == ResourceType.CONTENT:
            return self.db_service.get_content(user_id, change.resource_id)
        if change.resource_type == ResourceType.ANNOTATION:
            return self.db_service.get_annotation(user_id, change.resource_id)
        if change.resource_type == ResourceType.PREFERENCE:
            return self.db_service.get_user_preferences(user_id)
        return self.db_service.get_user_ai_memory(user_id)

    def apply(
        self,
        user_id: str,
        change: SyncChange,
        expected_version: Optional[int] = None,
        session: Optional[Session] = None,
    ) -> None:
        """Apply one change.

        Args:
            user_id: Owner of the resource
            change: Change to apply
            expected_version: Optimistic version check for content and
                annotation writes; None disables the check
            session: Optional session to join

        Raises:
            InvalidArgumentError: Payload does not match its resource type
            VersionConflictError: Resource changed since expected_version
        """
        try:
            change.payload()
        except ValidationError as e:
            raise InvalidArgumentError(
                f"Invalid {change.resource_type.value} payload in change "
                f"{change.id}: {e}"
            ) from e

        is_delete = change.type == ChangeType.DELETE
        resource_type = change.resource_type

        if resource_type == ResourceType.CONTENT:
            if is_delete:
                self.db_service.delete_content(
                    user_id, change.resource_id, expected_version, session=session
                )
            else:
                self.db_service.save_content(
                    user_id,
                    self._with_id(change),
                    expected_version,
                    session=session,
                )
        elif resource_type == ResourceType.ANNOTATION:
            if is_delete:
                self.db_service.delete_annotation(
                    user_id, change.resource_id, expected_version, session=session
                )
            else:
                self.db_service.save_annotation(
                    user_id,
                    self._with_id(change),
                    expected_version,
                    session=session,
                )
        elif resource_type == ResourceType.PREFERENCE:
            self.db_service.update_user_preferences(
                user_id, {} if is_delete else dict(change.data or {}), session=session
            )
        elif resource_type == ResourceType.MEMORY:
            self.db_service.update_user_ai_memory(
                user_id, {} if is_delete else dict(change.data or {}), session=session
            )

        logger.debug("Applied %s", change)

    @staticmethod
    def _with_id(change: SyncChange) -> Dict[str, Any]:
        # resource_id is authoritative over any id inside the payload
        return {**(change.data or {}), "id": change.resource_id}
