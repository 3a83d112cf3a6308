"""Database package: SQLAlchemy models and the database service."""

from .models import (
    Annotation,
    BackupRecord,
    Base,
    Content,
    Conversation,
    Device,
    SyncChangeRecord,
    SyncConflictRecord,
    SyncHistory,
    SyncRunStatus,
    SyncType,
    User,
    UserAIMemory,
)
from .service import DatabaseService

__all__ = [
    # Models
    "Annotation",
    "BackupRecord",
    "Base",
    "Content",
    "Conversation",
    "Device",
    "SyncChangeRecord",
    "SyncConflictRecord",
    "SyncHistory",
    "User",
    "UserAIMemory",
    # Status enums
    "SyncRunStatus",
    "SyncType",
    # Database service
    "DatabaseService",
]
