"""Exceptions raised by the experience core."""

from typing import Optional


class CoreError(Exception):
    """Base exception for all experience core errors."""

    pass


class NotFoundError(CoreError):
    """A referenced record does not exist for the given user.

    Raised for missing conflicts, backups, conversations, users and devices.
    """

    def __init__(self, kind: str, identifier: str, user_id: Optional[str] = None):
        message = f"{kind} not found: {identifier}"
        if user_id:
            message += f" (user: {user_id})"
        super().__init__(message)
        self.kind = kind
        self.identifier = identifier
        self.user_id = user_id


class InvalidArgumentError(CoreError):
    """A caller-supplied value is not acceptable.

    Raised when:
    - A conflict resolution strategy is unknown
    - Custom resolution data is missing
    - A change payload fails validation
    - A resource id belongs to another user
    """

    pass


class StorageFailureError(CoreError):
    """An underlying read or write against the database failed."""

    pass


class VersionConflictError(CoreError):
    """A write carried an expected version that no longer matches."""

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        expected: Optional[int],
        actual: Optional[int],
    ):
        super().__init__(
            f"{resource_type} {resource_id} changed concurrently "
            f"(expected version {expected}, found {actual})"
        )
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.expected = expected
        self.actual = actual


class ApplyFailureError(CoreError):
    """A single change in a batch could not be applied."""

    def __init__(self, change_id: str, reason: str):
        super().__init__(f"Failed to apply change {change_id}: {reason}")
        self.change_id = change_id
        self.reason = reason


class SyncFailureError(CoreError):
    """A sync, resolve, backup or restore operation aborted."""

    pass
