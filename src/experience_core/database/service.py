"""Database service for user resources, the change log, conflicts and backups."""

import logging
import math
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Type, TypeVar

from pydantic import ValidationError
from sqlalchemy import create_engine, delete, func, inspect, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from alembic import command  # type: ignore[attr-defined]
from alembic.config import Config as AlembicConfig  # type: ignore[import-not-found]

from ..exceptions import (
    InvalidArgumentError,
    NotFoundError,
    StorageFailureError,
    VersionConflictError,
)
from ..models import (
    AnnotationPayload,
    BackupInfo,
    BackupType,
    ChangeType,
    ConflictType,
    ContentPayload,
    ResourcePayload,
    ResourceType,
    SyncChange,
    SyncConflict,
    new_id,
)
from ..utils.serialization import jsonable
from ..utils.timeutils import to_naive_utc, utcnow
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

logger = logging.getLogger(__name__)

P = TypeVar("P", bound=ResourcePayload)


class DatabaseService:
    """Service for database operations and transaction management.

    Every write method accepts an optional ``session``. When given, the write
    joins the caller's transaction and is only flushed; otherwise the method
    runs in its own transaction and commits before returning.
    """

    def __init__(self, db_path: Optional[Path] = None) -> None:
        """Initialize database service.

        Args:
            db_path: Path to SQLite database file.
                    If None, uses default ~/.experience-core/core.db
        """
        if db_path is None:
            db_path = Path.home() / ".experience-core" / "core.db"

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        db_exists = self.db_path.exists()

        self.engine = create_engine(f"sqlite:///{self.db_path}", echo=False)
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )

        logger.info("Database initialized at: %s", self.db_path)

        if not db_exists:
            logger.info("New database detected, initializing schema...")
            self.init_db()

    def init_db(self) -> None:
        """Initialize database schema.

        This creates all tables using SQLAlchemy and then stamps Alembic to mark
        the database as current.
        """
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database schema created successfully")
        self._stamp_migrations()

    def _alembic_config(self) -> Optional[AlembicConfig]:
        """Build an Alembic config pointing at this database, if available."""
        # alembic.ini and alembic/ live in the project root, above src/
        package_dir = Path(__file__).parent.parent.parent.parent
        alembic_ini = package_dir / "alembic.ini"
        alembic_dir = package_dir / "alembic"

        if not alembic_ini.exists() or not alembic_dir.exists():
            logger.warning("Alembic not found at %s, skipping", package_dir)
            return None

        alembic_cfg = AlembicConfig(str(alembic_ini))
        alembic_cfg.attributes["configure_logger"] = False
        alembic_cfg.set_main_option("script_location", str(alembic_dir))
        alembic_cfg.set_main_option("sqlalchemy.url", f"sqlite:///{self.db_path}")
        return alembic_cfg

    def _stamp_migrations(self) -> None:
        """Stamp database as being at the latest migration version."""
        try:
            alembic_cfg = self._alembic_config()
            if alembic_cfg is None:
                return
            command.stamp(alembic_cfg, "head")
            logger.info("Database stamped with latest migration version")
        except Exception as e:
            logger.error("Failed to stamp migrations: %s", e)
            logger.warning("Database may need manual migration")

    def run_migrations(self) -> None:
        """Run Alembic migrations to upgrade database to latest version."""
        try:
            alembic_cfg = self._alembic_config()
            if alembic_cfg is None:
                return
            command.upgrade(alembic_cfg, "head")
            logger.info("Database migrations applied successfully")
        except Exception as e:
            logger.error("Failed to run migrations: %s", e)
            logger.warning("Continuing with base schema only")

    def get_session(self) -> Session:
        """Get a new database session.

        Note:
            Caller is responsible for closing the session
        """
        return self.SessionLocal()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Provide a transactional scope around a series of operations.

        Commits on success and rolls back on any error. SQLAlchemy errors are
        re-raised as StorageFailureError.
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StorageFailureError(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def _use_session(self, session: Optional[Session]) -> Iterator[Session]:
        """Join the caller's transaction or open a new one."""
        if session is not None:
            yield session
        else:
            with self.session_scope() as own_session:
                yield own_session

    def is_initialized(self) -> bool:
        """Check if the database service is properly initialized.

        Returns:
            True if the engine works and the sync tables exist, False otherwise
        """
        try:
            inspector = inspect(self.engine)
            required = ("users", "devices", "sync_changes", "sync_conflicts", "backups")
            missing = [name for name in required if not inspector.has_table(name)]
            if missing:
                logger.debug("Required tables missing: %s", missing)
                return False

            with self.SessionLocal() as session:
                session.execute(select(1))
            return True
        except Exception as e:
            logger.debug("Database initialization check failed: %s", e)
            return False

    def close(self) -> None:
        """Close database connection."""
        if hasattr(self, "engine"):
            self.engine.dispose()
            logger.info("Database connection closed")

    def get_statistics(self) -> Dict[str, int]:
        """Get row counts for every table."""
        with self.session_scope() as session:
            return {
                "users": session.scalar(select(func.count(User.id))) or 0,
                "devices": session.scalar(select(func.count(Device.id))) or 0,
                "contents": session.scalar(select(func.count(Content.id))) or 0,
                "annotations": session.scalar(select(func.count(Annotation.id))) or 0,
                "conversations": session.scalar(select(func.count(Conversation.id)))
                or 0,
                "sync_changes": session.scalar(select(func.count(SyncChangeRecord.id)))
                or 0,
                "sync_conflicts": session.scalar(
                    select(func.count(SyncConflictRecord.id))
                )
                or 0,
                "backups": session.scalar(select(func.count(BackupRecord.id))) or 0,
            }

    @staticmethod
    def _validate(model: Type[P], payload: Dict[str, Any]) -> P:
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise InvalidArgumentError(f"Invalid {model.__name__}: {e}") from e

    # =========================================================================
    # Users
    # =========================================================================

    def create_user(
        self,
        email: str,
        name: str,
        preferences: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
    ) -> User:
        """Create a user record.

        Args:
            email: Unique email address
            name: Display name
            preferences: Initial preference document
            user_id: Explicit id, generated when omitted

        Returns:
            Created User object
        """
        try:
            with self.session_scope() as session:
                user = User(
                    id=user_id or new_id(),
                    email=email,
                    name=name,
                    preferences=preferences or {},
                )
                session.add(user)
                session.flush()
        except StorageFailureError as e:
            if isinstance(e.__cause__, IntegrityError):
                raise InvalidArgumentError(f"User already exists: {email}") from e
            raise
        logger.info("Created user: %s (ID: %s)", email, user.id)
        return user

    def get_user(self, user_id: str) -> User:
        """Get user by id, raising NotFoundError when missing."""
        with self.session_scope() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("User", user_id)
            return user

    def get_user_preferences(self, user_id: str) -> Dict[str, Any]:
        """Return the user's preference document."""
        return dict(self.get_user(user_id).preferences or {})

    def update_user_preferences(
        self,
        user_id: str,
        preferences: Dict[str, Any],
        session: Optional[Session] = None,
    ) -> None:
        """Replace the user's preference document wholesale."""
        with self._use_session(session) as s:
            user = s.get(User, user_id)
            if user is None:
                raise NotFoundError("User", user_id)
            user.preferences = jsonable(preferences) or {}
            s.flush()
        logger.debug("Replaced preferences for user %s", user_id)

    # =========================================================================
    # Devices
    # =========================================================================

    def register_device(
        self,
        user_id: str,
        device_type: str,
        platform: str,
        version: str,
        name: str,
        device_id: Optional[str] = None,
    ) -> Device:
        """Register a device for a user.

        Returns:
            Created Device object, marked online and untrusted
        """
        missing = [
            label
            for label, value in (
                ("type", device_type),
                ("platform", platform),
                ("version", version),
                ("name", name),
            )
            if not value
        ]
        if missing:
            raise InvalidArgumentError(f"Missing device fields: {', '.join(missing)}")

        with self.session_scope() as session:
            if session.get(User, user_id) is None:
                raise NotFoundError("User", user_id)
            device = Device(
                id=device_id or new_id(),
                user_id=user_id,
                type=device_type,
                platform=platform,
                version=version,
                name=name,
                last_seen=utcnow(),
                is_online=True,
                is_trusted=False,
            )
            session.add(device)
            session.flush()
        logger.info("Registered device %s (%s) for user %s", device.id, name, user_id)
        return device

    def get_device(self, user_id: str, device_id: str) -> Device:
        """Get a user's device, raising NotFoundError when missing."""
        with self.session_scope() as session:
            device = session.get(Device, device_id)
            if device is None or device.user_id != user_id:
                raise NotFoundError("Device", device_id, user_id)
            return device

    def get_user_devices(self, user_id: str) -> List[Device]:
        """List devices registered to a user."""
        with self.session_scope() as session:
            stmt = (
                select(Device).where(Device.user_id == user_id).order_by(Device.name)
            )
            return list(session.scalars(stmt))

    def update_device_status(self, device_id: str, is_online: bool) -> None:
        """Update a device's online flag and last-seen time."""
        with self.session_scope() as session:
            device = session.get(Device, device_id)
            if device is None:
                raise NotFoundError("Device", device_id)
            device.is_online = is_online
            device.last_seen = utcnow()
        logger.info("Device %s is now %s", device_id, "online" if is_online else "offline")

    # =========================================================================
    # Contents
    # =========================================================================

    @staticmethod
    def _content_to_dict(row: Content) -> Dict[str, Any]:
        return {
            "id": row.id,
            "type": row.type,
            "title": row.title,
            "content": row.content,
            "metadata": row.metadata_,
            "tags": row.tags,
            "is_private": row.is_private,
            "version": row.version,
            "created_at": row.created_at,
            "updated_at": row.updated_at,
        }

    def get_all_user_contents(self, user_id: str) -> List[Dict[str, Any]]:
        """Get every content item owned by a user, newest first."""
        with self.session_scope() as session:
            stmt = (
                select(Content)
                .where(Content.user_id == user_id)
                .order_by(Content.created_at.desc(), Content.id)
            )
            return [self._content_to_dict(row) for row in session.scalars(stmt)]

    def get_content(self, user_id: str, content_id: str) -> Optional[Dict[str, Any]]:
        """Get a single content item, or None if the user has no such item."""
        with self.session_scope() as session:
            row = session.get(Content, content_id)
            if row is None or row.user_id != user_id:
                return None
            return self._content_to_dict(row)

    def get_content_version(
        self, user_id: str, content_id: str, session: Optional[Session] = None
    ) -> int:
        """Current version of a content item, 0 when it does not exist."""
        with self._use_session(session) as s:
            row = s.get(Content, content_id)
            if row is None or row.user_id != user_id:
                return 0
            return row.version

    def save_content(
        self,
        user_id: str,
        payload: Dict[str, Any],
        expected_version: Optional[int] = None,
        session: Optional[Session] = None,
    ) -> int:
        """Create or replace a content item.

        Args:
            user_id: Owner of the content
            payload: Content fields; must include ``id``
            expected_version: Version the caller last saw (0 for "absent");
                None skips the check
            session: Optional session to join

        Returns:
            The stored version after the write

        Raises:
            VersionConflictError: The stored version differs from expected
            InvalidArgumentError: Bad payload or id owned by another user
        """
        data = self._validate(ContentPayload, payload)
        if not data.id:
            raise InvalidArgumentError("Content payload requires an id")

        now = utcnow()
        with self._use_session(session) as s:
            row = s.get(Content, data.id)
            if row is not None and row.user_id != user_id:
                raise InvalidArgumentError(
                    f"Content {data.id} belongs to another user"
                )
            self._check_version(
                ResourceType.CONTENT, data.id, row, expected_version
            )

            if row is None:
                row = Content(
                    id=data.id,
                    user_id=user_id,
                    created_at=to_naive_utc(data.created_at or now),
                )
                s.add(row)
            elif data.created_at is not None:
                row.created_at = to_naive_utc(data.created_at)

            row.type = data.type
            row.title = data.title
            row.content = data.content
            row.metadata_ = jsonable(data.metadata)
            row.tags = list(data.tags)
            row.is_private = data.is_private
            row.updated_at = to_naive_utc(data.updated_at or now)
            self._flush_versioned(
                s, ResourceType.CONTENT, data.id, expected_version
            )
            version = row.version

        logger.debug("Saved content %s (version %s)", data.id, version)
        return version

    def delete_content(
        self,
        user_id: str,
        content_id: str,
        expected_version: Optional[int] = None,
        session: Optional[Session] = None,
    ) -> bool:
        """Delete a content item by id.

        Returns:
            True if a row was deleted, False if it did not exist
        """
        with self._use_session(session) as s:
            row = s.get(Content, content_id)
            if row is not None and row.user_id != user_id:
                raise InvalidArgumentError(
                    f"Content {content_id} belongs to another user"
                )
            self._check_version(
                ResourceType.CONTENT, content_id, row, expected_version
            )
            if row is None:
                return False
            s.delete(row)
            self._flush_versioned(
                s, ResourceType.CONTENT, content_id, expected_version
            )

        logger.debug("Deleted content %s", content_id)
        return True

    @staticmethod
    def _check_version(
        resource_type: ResourceType,
        resource_id: str,
        row: Optional[Any],
        expected_version: Optional[int],
    ) -> None:
        if expected_version is None:
            return
        actual = row.version if row is not None else 0
        if actual != expected_version:
            raise VersionConflictError(
                resource_type.value, resource_id, expected_version, actual
            )

    @staticmethod
    def _flush_versioned(
        session: Session,
        resource_type: ResourceType,
        resource_id: str,
        expected_version: Optional[int],
    ) -> None:
        """Flush a versioned write, mapping lost races to VersionConflictError.

        The mapper adds ``WHERE version = :loaded`` to UPDATE and DELETE, so a
        row changed by another writer since it was loaded raises StaleDataError;
        a concurrent insert of the same id raises IntegrityError.
        """
        try:
            session.flush()
        except (StaleDataError, IntegrityError) as e:
            raise VersionConflictError(
                resource_type.value, resource_id, expected_version, None
            ) from e

    # =========================================================================
    # Annotations
    # =========================================================================

    @staticmethod
    def _annotation_to_dict(row: Annotation) -> Dict[str, Any]:
        return {
            "id": row.id,
            "content_id": row.content_id,
            "content_type": row.content_type,
            "annotation_type": row.annotation_type,
            "selection": row.selection,
            "note": row.note,
            "tags": row.tags,
            "color": row.color,
            "is_private": row.is_private,
            "version": row.version,
            "created_at": row.created_at,
            "updated_at": row.updated_at,
        }

    def get_all_user_annotations(self, user_id: str) -> List[Dict[str, Any]]:
        """Get every annotation owned by a user, newest first."""
        with self.session_scope() as session:
            stmt = (
                select(Annotation)
                .where(Annotation.user_id == user_id)
                .order_by(Annotation.created_at.desc(), Annotation.id)
            )
            return [self._annotation_to_dict(row) for row in session.scalars(stmt)]

    def get_annotation(
        self, user_id: str, annotation_id: str
    ) -> Optional[Dict[str, Any]]:
        """Get a single annotation, or None if the user has no such item."""
        with self.session_scope() as session:
            row = session.get(Annotation, annotation_id)
            if row is None or row.user_id != user_id:
                return None
            return self._annotation_to_dict(row)

    def get_annotation_version(
        self, user_id: str, annotation_id: str, session: Optional[Session] = None
    ) -> int:
        """Current version of an annotation, 0 when it does not exist."""
        with self._use_session(session) as s:
            row = s.get(Annotation, annotation_id)
            if row is None or row.user_id != user_id:
                return 0
            return row.version

    def save_annotation(
        self,
        user_id: str,
        payload: Dict[str, Any],
        expected_version: Optional[int] = None,
        session: Optional[Session] = None,
    ) -> int:
        """Create or replace an annotation.

        Same contract as ``save_content``.
        """
        data = self._validate(AnnotationPayload, payload)
        if not data.id:
            raise InvalidArgumentError("Annotation payload requires an id")

        now = utcnow()
        with self._use_session(session) as s:
            row = s.get(Annotation, data.id)
            if row is not None and row.user_id != user_id:
                raise InvalidArgumentError(
                    f"Annotation {data.id} belongs to another user"
                )
            self._check_version(
                ResourceType.ANNOTATION, data.id, row, expected_version
            )

            if row is None:
                row = Annotation(
                    id=data.id,
                    user_id=user_id,
                    created_at=to_naive_utc(data.created_at or now),
                )
                s.add(row)
            elif data.created_at is not None:
                row.created_at = to_naive_utc(data.created_at)

            row.content_id = data.content_id
            row.content_type = data.content_type
            row.annotation_type = data.annotation_type
            row.selection = jsonable(data.selection)
            row.note = data.note
            row.tags = list(data.tags)
            row.color = data.color
            row.is_private = data.is_private
            row.updated_at = to_naive_utc(data.updated_at or now)
            self._flush_versioned(
                s, ResourceType.ANNOTATION, data.id, expected_version
            )
            version = row.version

        logger.debug("Saved annotation %s (version %s)", data.id, version)
        return version

    def delete_annotation(
        self,
        user_id: str,
        annotation_id: str,
        expected_version: Optional[int] = None,
        session: Optional[Session] = None,
    ) -> bool:
        """Delete an annotation by id.

        Returns:
            True if a row was deleted, False if it did not exist
        """
        with self._use_session(session) as s:
            row = s.get(Annotation, annotation_id)
            if row is not None and row.user_id != user_id:
                raise InvalidArgumentError(
                    f"Annotation {annotation_id} belongs to another user"
                )
            self._check_version(
                ResourceType.ANNOTATION, annotation_id, row, expected_version
            )
            if row is None:
                return False
            s.delete(row)
            self._flush_versioned(
                s, ResourceType.ANNOTATION, annotation_id, expected_version
            )

        logger.debug("Deleted annotation %s", annotation_id)
        return True

    # =========================================================================
    # Conversations
    # =========================================================================

    @staticmethod
    def _conversation_to_dict(row: Conversation) -> Dict[str, Any]:
        return {
            "id": row.id,
            "title": row.title,
            "messages": row.messages,
            "context": row.context,
            "created_at": row.created_at,
            "updated_at": row.updated_at,
        }

    def save_conversation(
        self,
        user_id: str,
        conversation: Dict[str, Any],
        session: Optional[Session] = None,
    ) -> None:
        """Create or replace a conversation."""
        conversation_id = conversation.get("id")
        if not conversation_id:
            raise InvalidArgumentError("Conversation requires an id")

        now = utcnow()
        with self._use_session(session) as s:
            row = s.get(Conversation, conversation_id)
            if row is not None and row.user_id != user_id:
                raise InvalidArgumentError(
                    f"Conversation {conversation_id} belongs to another user"
                )
            if row is None:
                row = Conversation(id=conversation_id, user_id=user_id)
                s.add(row)
            row.title = conversation.get("title")
            row.messages = jsonable(conversation.get("messages")) or []
            row.context = jsonable(conversation.get("context")) or {}
            row.created_at = _parse_datetime(conversation.get("created_at")) or now
            row.updated_at = _parse_datetime(conversation.get("updated_at")) or now
            s.flush()

    def get_conversation(self, user_id: str, conversation_id: str) -> Dict[str, Any]:
        """Get a conversation, raising NotFoundError when missing."""
        with self.session_scope() as session:
            row = session.get(Conversation, conversation_id)
            if row is None or row.user_id != user_id:
                raise NotFoundError("Conversation", conversation_id, user_id)
            return self._conversation_to_dict(row)

    def get_user_conversations(self, user_id: str) -> List[Dict[str, Any]]:
        """Get all conversations of a user, most recently updated first."""
        with self.session_scope() as session:
            stmt = (
                select(Conversation)
                .where(Conversation.user_id == user_id)
                .order_by(Conversation.updated_at.desc(), Conversation.id)
            )
            return [self._conversation_to_dict(row) for row in session.scalars(stmt)]

    # =========================================================================
    # AI memory
    # =========================================================================

    def get_user_ai_memory(self, user_id: str) -> Dict[str, Any]:
        """Return the user's AI memory document ({} when none is stored)."""
        with self.session_scope() as session:
            row = session.scalar(
                select(UserAIMemory).where(UserAIMemory.user_id == user_id)
            )
            return dict(row.memory_data) if row is not None else {}

    def update_user_ai_memory(
        self,
        user_id: str,
        memory: Dict[str, Any],
        session: Optional[Session] = None,
    ) -> None:
        """Replace the user's AI memory document wholesale."""
        with self._use_session(session) as s:
            row = s.scalar(select(UserAIMemory).where(UserAIMemory.user_id == user_id))
            if row is None:
                row = UserAIMemory(user_id=user_id)
                s.add(row)
            row.memory_data = jsonable(memory) or {}
            row.updated_at = utcnow()
            s.flush()
        logger.debug("Replaced AI memory for user %s", user_id)

    # =========================================================================
    # Change log
    # =========================================================================

    @staticmethod
    def _change_from_record(record: SyncChangeRecord) -> SyncChange:
        return SyncChange(
            id=record.id,
            type=ChangeType(record.type),
            resource_type=ResourceType(record.resource_type),
            resource_id=record.resource_id,
            data=record.data,
            timestamp=record.timestamp,
            device_id=record.device_id,
            version=record.version,
        )

    def append_change(
        self, user_id: str, change: SyncChange, session: Optional[Session] = None
    ) -> None:
        """Append a change to the log; existing entries are never edited."""
        with self._use_session(session) as s:
            s.add(
                SyncChangeRecord(
                    id=change.id,
                    user_id=user_id,
                    device_id=change.device_id,
                    type=change.type.value,
                    resource_type=change.resource_type.value,
                    resource_id=change.resource_id,
                    data=jsonable(change.data),
                    timestamp=change.timestamp,
                    version=change.version,
                )
            )
            s.flush()

    def get_changes_after(self, user_id: str, timestamp: datetime) -> List[SyncChange]:
        """Get all logged changes for a user newer than ``timestamp``."""
        with self.session_scope() as session:
            stmt = (
                select(SyncChangeRecord)
                .where(
                    SyncChangeRecord.user_id == user_id,
                    SyncChangeRecord.timestamp > to_naive_utc(timestamp),
                )
                .order_by(SyncChangeRecord.timestamp, SyncChangeRecord.id)
            )
            return [self._change_from_record(r) for r in session.scalars(stmt)]

    def get_latest_change(
        self, user_id: str, resource_type: ResourceType, resource_id: str
    ) -> Optional[SyncChange]:
        """Get the most recent logged change for one resource."""
        with self.session_scope() as session:
            stmt = (
                select(SyncChangeRecord)
                .where(
                    SyncChangeRecord.user_id == user_id,
                    SyncChangeRecord.resource_type == resource_type.value,
                    SyncChangeRecord.resource_id == resource_id,
                )
                .order_by(SyncChangeRecord.timestamp.desc())
                .limit(1)
            )
            record = session.scalar(stmt)
            return self._change_from_record(record) if record is not None else None

    def get_newer_change(
        self,
        user_id: str,
        resource_type: ResourceType,
        resource_id: str,
        after: datetime,
        exclude_device_id: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> Optional[SyncChange]:
        """Get the oldest logged change to a resource made after ``after``.

        Args:
            user_id: Owner of the resource
            resource_type: Resource family
            resource_id: Resource id
            after: Exclusive lower bound on the change timestamp
            exclude_device_id: Ignore changes made by this device
            session: Optional session to join, so the check shares the
                caller's transaction
        """
        with self._use_session(session) as s:
            stmt = select(SyncChangeRecord).where(
                SyncChangeRecord.user_id == user_id,
                SyncChangeRecord.resource_type == resource_type.value,
                SyncChangeRecord.resource_id == resource_id,
                SyncChangeRecord.timestamp > to_naive_utc(after),
            )
            if exclude_device_id is not None:
                stmt = stmt.where(SyncChangeRecord.device_id != exclude_device_id)
            record = s.scalar(
                stmt.order_by(SyncChangeRecord.timestamp, SyncChangeRecord.id).limit(1)
            )
            return self._change_from_record(record) if record is not None else None

    def has_change(self, user_id: str, change_id: str) -> bool:
        """Whether a change id is already in the user's log."""
        with self.session_scope() as session:
            record = session.get(SyncChangeRecord, change_id)
            return record is not None and record.user_id == user_id

    def get_pending_changes_count(self, user_id: str, device_id: str) -> int:
        """Count every logged change that originated from a device."""
        with self.session_scope() as session:
            stmt = select(func.count(SyncChangeRecord.id)).where(
                SyncChangeRecord.user_id == user_id,
                SyncChangeRecord.device_id == device_id,
            )
            return session.scalar(stmt) or 0

    # =========================================================================
    # Conflicts
    # =========================================================================

    @staticmethod
    def _conflict_from_record(record: SyncConflictRecord) -> SyncConflict:
        return SyncConflict(
            id=record.id,
            resource_type=ResourceType(record.resource_type),
            resource_id=record.resource_id,
            local_version=record.local_version,
            remote_version=record.remote_version,
            conflict_type=ConflictType(record.conflict_type),
            created_at=record.created_at,
            change_id=record.change_id,
        )

    def save_conflict(
        self, user_id: str, conflict: SyncConflict, session: Optional[Session] = None
    ) -> None:
        """Persist an unresolved conflict."""
        with self._use_session(session) as s:
            s.add(
                SyncConflictRecord(
                    id=conflict.id,
                    user_id=user_id,
                    resource_type=conflict.resource_type.value,
                    resource_id=conflict.resource_id,
                    local_version=jsonable(conflict.local_version),
                    remote_version=jsonable(conflict.remote_version),
                    conflict_type=conflict.conflict_type.value,
                    created_at=conflict.created_at,
                    change_id=conflict.change_id,
                )
            )
            s.flush()
        logger.info(
            "Recorded %s conflict %s for user %s", conflict, conflict.id, user_id
        )

    def get_user_conflicts(self, user_id: str) -> List[SyncConflict]:
        """List unresolved conflicts for a user, newest first."""
        with self.session_scope() as session:
            stmt = (
                select(SyncConflictRecord)
                .where(SyncConflictRecord.user_id == user_id)
                .order_by(SyncConflictRecord.created_at.desc(), SyncConflictRecord.id)
            )
            return [self._conflict_from_record(r) for r in session.scalars(stmt)]

    def get_conflict(self, user_id: str, conflict_id: str) -> Optional[SyncConflict]:
        """Get a conflict by id, or None when the user has no such conflict."""
        with self.session_scope() as session:
            record = session.get(SyncConflictRecord, conflict_id)
            if record is None or record.user_id != user_id:
                return None
            return self._conflict_from_record(record)

    def get_conflict_for_change(
        self, user_id: str, change_id: str
    ) -> Optional[SyncConflict]:
        """Get the open conflict recorded for a submitted change, if any."""
        with self.session_scope() as session:
            record = session.scalar(
                select(SyncConflictRecord)
                .where(
                    SyncConflictRecord.user_id == user_id,
                    SyncConflictRecord.change_id == change_id,
                )
                .limit(1)
            )
            return self._conflict_from_record(record) if record is not None else None

    def has_open_conflict(
        self, user_id: str, resource_type: ResourceType, resource_id: str
    ) -> bool:
        """Whether a resource already has an unresolved conflict."""
        with self.session_scope() as session:
            stmt = select(func.count(SyncConflictRecord.id)).where(
                SyncConflictRecord.user_id == user_id,
                SyncConflictRecord.resource_type == resource_type.value,
                SyncConflictRecord.resource_id == resource_id,
            )
            return (session.scalar(stmt) or 0) > 0

    def delete_conflict(
        self, user_id: str, conflict_id: str, session: Optional[Session] = None
    ) -> bool:
        """Delete a conflict; returns False if nothing was deleted."""
        with self._use_session(session) as s:
            result = s.execute(
                delete(SyncConflictRecord).where(
                    SyncConflictRecord.id == conflict_id,
                    SyncConflictRecord.user_id == user_id,
                )
            )
            return bool(result.rowcount)

    def get_conflicts_count(self, user_id: str) -> int:
        """Count unresolved conflicts for a user across all devices."""
        with self.session_scope() as session:
            stmt = select(func.count(SyncConflictRecord.id)).where(
                SyncConflictRecord.user_id == user_id
            )
            return session.scalar(stmt) or 0

    # =========================================================================
    # Backups
    # =========================================================================

    @staticmethod
    def _backup_from_record(record: BackupRecord) -> BackupInfo:
        return BackupInfo(
            id=record.id,
            user_id=record.user_id,
            type=BackupType(record.type),
            size=record.size,
            item_count=record.item_count,
            created_at=record.created_at,
            metadata=record.metadata_,
        )

    def save_backup(self, backup: BackupInfo, data: str) -> None:
        """Persist backup metadata and its serialized snapshot as one row."""
        with self.session_scope() as session:
            session.add(
                BackupRecord(
                    id=backup.id,
                    user_id=backup.user_id,
                    type=backup.type.value,
                    size=backup.size,
                    item_count=backup.item_count,
                    metadata_=jsonable(backup.metadata),
                    data=data,
                    created_at=backup.created_at,
                )
            )

    def get_backup(self, user_id: str, backup_id: str) -> Optional[BackupInfo]:
        """Get backup metadata, or None when the user has no such backup."""
        with self.session_scope() as session:
            record = session.get(BackupRecord, backup_id)
            if record is None or record.user_id != user_id:
                return None
            return self._backup_from_record(record)

    def get_backup_data(self, user_id: str, backup_id: str) -> str:
        """Get the serialized snapshot of a backup."""
        with self.session_scope() as session:
            data = session.scalar(
                select(BackupRecord.data).where(
                    BackupRecord.id == backup_id, BackupRecord.user_id == user_id
                )
            )
            if data is None:
                raise NotFoundError("Backup", backup_id, user_id)
            return data

    def list_backups(self, user_id: str) -> List[BackupInfo]:
        """List a user's backups, newest first."""
        with self.session_scope() as session:
            stmt = (
                select(BackupRecord)
                .where(BackupRecord.user_id == user_id)
                .order_by(BackupRecord.created_at.desc(), BackupRecord.id)
            )
            return [self._backup_from_record(r) for r in session.scalars(stmt)]

    # =========================================================================
    # Sync history
    # =========================================================================

    def update_last_sync_time(
        self,
        user_id: str,
        device_id: str,
        time: datetime,
        sync_type: SyncType = SyncType.DELTA,
        status: SyncRunStatus = SyncRunStatus.COMPLETED,
        synced_items: int = 0,
        conflicts: int = 0,
    ) -> None:
        """Record a sync run, which moves the device's last sync time."""
        with self.session_scope() as session:
            session.add(
                SyncHistory(
                    user_id=user_id,
                    device_id=device_id,
                    sync_type=sync_type.value,
                    status=status.value,
                    synced_items=synced_items,
                    conflicts=conflicts,
                    timestamp=to_naive_utc(time),
                )
            )

    def get_last_sync_time(self, user_id: str, device_id: str) -> Optional[datetime]:
        """Latest recorded sync time of a device, or None if it never synced."""
        with self.session_scope() as session:
            return session.scalar(
                select(func.max(SyncHistory.timestamp)).where(
                    SyncHistory.user_id == user_id,
                    SyncHistory.device_id == device_id,
                )
            )

    def get_sync_history(
        self, user_id: str, device_id: str, page: int = 1, limit: int = 20
    ) -> Dict[str, Any]:
        """Get a page of sync history for a device, newest first.

        Returns:
            Dictionary with ``items``, ``total``, ``page`` and ``total_pages``
        """
        if page < 1 or limit < 1:
            raise InvalidArgumentError("page and limit must be positive")

        with self.session_scope() as session:
            where = (SyncHistory.user_id == user_id, SyncHistory.device_id == device_id)
            total = session.scalar(select(func.count(SyncHistory.id)).where(*where)) or 0
            stmt = (
                select(SyncHistory)
                .where(*where)
                .order_by(SyncHistory.timestamp.desc(), SyncHistory.id.desc())
                .limit(limit)
                .offset((page - 1) * limit)
            )
            items = [
                {
                    "id": row.id,
                    "device_id": row.device_id,
                    "sync_type": row.sync_type,
                    "status": row.status,
                    "synced_items": row.synced_items,
                    "conflicts": row.conflicts,
                    "timestamp": row.timestamp,
                }
                for row in session.scalars(stmt)
            ]

        return {
            "items": items,
            "total": total,
            "page": page,
            "total_pages": math.ceil(total / limit),
        }


def _parse_datetime(value: Any) -> Optional[datetime]:
    """Accept datetimes or ISO strings coming from snapshots."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    return to_naive_utc(datetime.fromisoformat(str(value)))
