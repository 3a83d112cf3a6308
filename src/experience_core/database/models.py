"""SQLAlchemy database models for user resources and multi-device sync."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from ..utils.timeutils import utcnow


class SyncType(str, Enum):
    """Kind of sync run recorded in the sync history."""

    FULL = "full"
    DELTA = "delta"


class SyncRunStatus(str, Enum):
    """Outcome of a recorded sync run."""

    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class User(Base):
    """Owner of all synced resources."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    preferences: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    devices: Mapped[List["Device"]] = relationship(
        "Device", back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        """String representation of User."""
        return f"<User(id='{self.id}', email='{self.email}')>"


class Device(Base):
    """A client device registered to a user."""

    __tablename__ = "devices"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)  # desktop, mobile
    platform: Mapped[str] = mapped_column(String(50), nullable=False)
    version: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    last_seen: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    is_online: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_trusted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    user: Mapped["User"] = relationship("User", back_populates="devices")

    __table_args__ = (Index("idx_devices_user_id", "user_id"),)

    def __repr__(self) -> str:
        """String representation of Device."""
        return f"<Device(id='{self.id}', name='{self.name}', user='{self.user_id}')>"


class Content(Base):
    """A diary entry, document or web capture owned by a user."""

    __tablename__ = "contents"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(
        String(50), nullable=False
    )  # diary, document, web_capture, ...
    title: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    metadata_: Mapped[dict] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_private: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Optimistic concurrency counter, managed by the mapper
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("idx_contents_user_id", "user_id"),
        Index("idx_contents_type", "type"),
        Index("idx_contents_created_at", "created_at"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        """String representation of Content."""
        return f"<Content(id='{self.id}', type='{self.type}', title='{self.title}')>"


class Annotation(Base):
    """A highlight or note attached to a piece of content."""

    __tablename__ = "annotations"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    # Not a foreign key: an annotation may arrive before its content syncs
    content_id: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(String(50), nullable=False)
    annotation_type: Mapped[str] = mapped_column(
        String(50), nullable=False
    )  # highlight, note, ...
    selection: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    color: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    is_private: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("idx_annotations_user_id", "user_id"),
        Index("idx_annotations_content_id", "content_id"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        """String representation of Annotation."""
        return (
            f"<Annotation(id='{self.id}', content_id='{self.content_id}', "
            f"type='{self.annotation_type}')>"
        )


class Conversation(Base):
    """A chat conversation with the AI service."""

    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    messages: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    context: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (Index("idx_conversations_user_id", "user_id"),)

    def __repr__(self) -> str:
        """String representation of Conversation."""
        return f"<Conversation(id='{self.id}', title='{self.title}')>"


class UserAIMemory(Base):
    """Per-user memory document maintained by the AI service."""

    __tablename__ = "user_ai_memory"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    memory_data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        """String representation of UserAIMemory."""
        return f"<UserAIMemory(user_id='{self.user_id}')>"


class SyncChangeRecord(Base):
    """Append-only change log entry for one device mutation."""

    __tablename__ = "sync_changes"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    # Not a foreign key: resolved changes are attributed to "system"
    device_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)  # create/update/delete
    resource_type: Mapped[str] = mapped_column(String(20), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(255), nullable=False)
    data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("idx_sync_changes_user_id", "user_id"),
        Index("idx_sync_changes_timestamp", "timestamp"),
        Index("idx_sync_changes_resource", "user_id", "resource_type", "resource_id"),
        Index("idx_sync_changes_device", "user_id", "device_id"),
    )

    def __repr__(self) -> str:
        """String representation of SyncChangeRecord."""
        return (
            f"<SyncChangeRecord(id='{self.id}', type='{self.type}', "
            f"resource='{self.resource_type}:{self.resource_id}')>"
        )


class SyncConflictRecord(Base):
    """Unresolved divergence between a local and a remote version."""

    __tablename__ = "sync_conflicts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    resource_type: Mapped[str] = mapped_column(String(20), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(255), nullable=False)
    local_version: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    remote_version: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    conflict_type: Mapped[str] = mapped_column(String(30), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    change_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        Index("idx_sync_conflicts_user_id", "user_id"),
        Index("idx_sync_conflicts_resource", "user_id", "resource_type", "resource_id"),
        Index("idx_sync_conflicts_change_id", "user_id", "change_id"),
    )

    def __repr__(self) -> str:
        """String representation of SyncConflictRecord."""
        return (
            f"<SyncConflictRecord(id='{self.id}', type='{self.conflict_type}', "
            f"resource='{self.resource_type}:{self.resource_id}')>"
        )


class BackupRecord(Base):
    """Point-in-time snapshot of a user's data set."""

    __tablename__ = "backups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)  # manual/automatic
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    item_count: Mapped[int] = mapped_column(Integer, nullable=False)
    metadata_: Mapped[dict] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )
    data: Mapped[str] = mapped_column(Text, nullable=False)  # serialized snapshot
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    __table_args__ = (Index("idx_backups_user_created", "user_id", "created_at"),)

    def __repr__(self) -> str:
        """String representation of BackupRecord."""
        return (
            f"<BackupRecord(id='{self.id}', type='{self.type}', "
            f"created_at='{self.created_at}')>"
        )


class SyncHistory(Base):
    """One completed sync run for a device."""

    __tablename__ = "sync_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    device_id: Mapped[str] = mapped_column(String(64), nullable=False)
    sync_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    synced_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    conflicts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("idx_sync_history_device", "user_id", "device_id", "timestamp"),
    )

    def __repr__(self) -> str:
        """String representation of SyncHistory."""
        return (
            f"<SyncHistory(id={self.id}, device='{self.device_id}', "
            f"type='{self.sync_type}', status='{self.status}')>"
        )
