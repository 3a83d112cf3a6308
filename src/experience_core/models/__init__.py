"""Models for the experience core."""

from .models import (
    PAYLOAD_MODELS,
    AnnotationPayload,
    BackupInfo,
    BackupType,
    ChangeType,
    ConflictResolution,
    ConflictType,
    ContentPayload,
    DeltaSyncResult,
    DeviceSyncState,
    FullSyncResult,
    MemoryPayload,
    PreferencePayload,
    ResolveResult,
    ResourcePayload,
    ResourceType,
    RestoreResult,
    SyncChange,
    SyncConflict,
    SyncStatus,
    new_id,
)

__all__ = [
    "PAYLOAD_MODELS",
    "AnnotationPayload",
    "BackupInfo",
    "BackupType",
    "ChangeType",
    "ConflictResolution",
    "ConflictType",
    "ContentPayload",
    "DeltaSyncResult",
    "DeviceSyncState",
    "FullSyncResult",
    "MemoryPayload",
    "PreferencePayload",
    "ResolveResult",
    "ResourcePayload",
    "ResourceType",
    "RestoreResult",
    "SyncChange",
    "SyncConflict",
    "SyncStatus",
    "new_id",
]
