"""Data models exchanged with devices and returned by the sync services."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..utils.timeutils import EPOCH, to_naive_utc, utcnow


class ChangeType(str, Enum):
    """Kind of mutation carried by a SyncChange."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ResourceType(str, Enum):
    """Resource families that take part in sync."""

    CONTENT = "content"
    ANNOTATION = "annotation"
    PREFERENCE = "preference"
    MEMORY = "memory"


class ConflictType(str, Enum):
    """Ways a local and a remote version can diverge."""

    CONCURRENT_UPDATE = "concurrent_update"
    DELETE_UPDATE = "delete_update"
    TYPE_MISMATCH = "type_mismatch"


class ConflictResolution(str, Enum):
    """Strategies for resolving a stored conflict."""

    USE_LOCAL = "use_local"
    USE_REMOTE = "use_remote"
    MERGE = "merge"  # shallow field merge, local wins
    CUSTOM = "custom"


class DeviceSyncState(str, Enum):
    """Derived per-device sync state, in decreasing precedence."""

    CONFLICT = "conflict"
    PENDING = "pending"
    SYNCED = "synced"
    ERROR = "error"


class BackupType(str, Enum):
    """How a backup was triggered."""

    MANUAL = "manual"
    AUTOMATIC = "automatic"


def new_id() -> str:
    """Generate a new record identifier."""
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Resource payloads (one variant per ResourceType)
# ---------------------------------------------------------------------------


class ResourcePayload(BaseModel):
    """Base class for typed resource payloads.

    Unknown fields pass validation. They stay in the logged change and reach
    other devices with it, but the resource stores keep only the columns
    they know.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class ContentPayload(ResourcePayload):
    """Payload of a content change."""

    id: Optional[str] = None
    type: str = "note"
    title: Optional[str] = None
    content: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)
    is_private: bool = Field(default=True, alias="isPrivate")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")


class AnnotationPayload(ResourcePayload):
    """Payload of an annotation change."""

    id: Optional[str] = None
    content_id: str = Field(alias="contentId")
    content_type: str = Field(default="content", alias="contentType")
    annotation_type: str = Field(default="highlight", alias="annotationType")
    selection: Dict[str, Any] = Field(default_factory=dict)
    note: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    color: Optional[str] = None
    is_private: bool = Field(default=True, alias="isPrivate")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")


class PreferencePayload(ResourcePayload):
    """Payload of a preference change; the whole document is replaced."""

    pass


class MemoryPayload(ResourcePayload):
    """Payload of an AI memory change; the whole document is replaced."""

    pass


PAYLOAD_MODELS: Dict[ResourceType, Type[ResourcePayload]] = {
    ResourceType.CONTENT: ContentPayload,
    ResourceType.ANNOTATION: AnnotationPayload,
    ResourceType.PREFERENCE: PreferencePayload,
    ResourceType.MEMORY: MemoryPayload,
}


# ---------------------------------------------------------------------------
# Sync records
# ---------------------------------------------------------------------------


class SyncChange(BaseModel):
    """A single mutation event submitted by a device or emitted by the server."""

    id: str = Field(default_factory=new_id)
    type: ChangeType
    resource_type: ResourceType = Field(alias="resourceType")
    resource_id: str = Field(alias="resourceId")
    data: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=utcnow)
    device_id: str = Field(alias="deviceId")
    version: int = 1

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        """Store timestamps as naive UTC."""
        return to_naive_utc(v)

    @model_validator(mode="after")
    def check_data_present(self) -> "SyncChange":
        """Create and update changes must carry a payload."""
        if self.type != ChangeType.DELETE and self.data is None:
            raise ValueError(f"{self.type.value} change requires data")
        return self

    def payload(self) -> Optional[ResourcePayload]:
        """Validate ``data`` into the typed payload for this resource type."""
        if self.data is None:
            return None
        return PAYLOAD_MODELS[self.resource_type].model_validate(self.data)

    def __str__(self) -> str:
        """Short human-readable form."""
        return (
            f"[{self.type.value}] {self.resource_type.value}:{self.resource_id} "
            f"from {self.device_id} @ {self.timestamp.isoformat()}"
        )


class SyncConflict(BaseModel):
    """An unresolved divergence between two versions of a resource."""

    id: str = Field(default_factory=new_id)
    resource_type: ResourceType
    resource_id: str
    local_version: Optional[Dict[str, Any]] = None
    remote_version: Optional[Dict[str, Any]] = None
    conflict_type: ConflictType = ConflictType.CONCURRENT_UPDATE
    created_at: datetime = Field(default_factory=utcnow)
    # Id of the submitted change that was blocked, if any
    change_id: Optional[str] = None

    def __str__(self) -> str:
        """Short human-readable form."""
        return (
            f"{self.conflict_type.value}: "
            f"{self.resource_type.value}:{self.resource_id}"
        )


class SyncStatus(BaseModel):
    """Derived sync state of one device."""

    user_id: str
    device_id: str
    last_sync_time: datetime = EPOCH
    status: DeviceSyncState = DeviceSyncState.SYNCED
    pending_changes: int = 0
    conflict_count: int = 0


class BackupInfo(BaseModel):
    """Metadata describing a stored backup snapshot."""

    id: str = Field(default_factory=new_id)
    user_id: str
    type: BackupType = BackupType.MANUAL
    size: int = 0
    item_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------


class FullSyncResult(BaseModel):
    """Result of a full sync."""

    success: bool = True
    synced_items: int = 0
    conflicts: int = 0
    timestamp: datetime = Field(default_factory=utcnow)


class DeltaSyncResult(BaseModel):
    """Result of a delta sync; the only partial-success operation."""

    success: bool = True
    applied_changes: int = 0
    conflicts: int = 0
    failed_changes: int = 0
    server_changes: List[SyncChange] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utcnow)


class ResolveResult(BaseModel):
    """Result of resolving one conflict."""

    success: bool = True
    conflict_id: str
    resolution: ConflictResolution


class RestoreResult(BaseModel):
    """Result of restoring a backup."""

    success: bool = True
    restored_items: int = 0
