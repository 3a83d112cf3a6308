"""Tests for backup service."""

import json
from unittest.mock import patch

import pytest

from experience_core.core.sync import BackupService, count_snapshot_items
from experience_core.database.service import DatabaseService
from experience_core.exceptions import (
    InvalidArgumentError,
    NotFoundError,
    StorageFailureError,
    SyncFailureError,
)
from experience_core.models import BackupType

USER = "user-1"


@pytest.fixture
def db_service(tmp_path):
    """Create a temporary database service with a populated user."""
    service = DatabaseService(tmp_path / "test.db")
    service.create_user(
        "alice@example.com", "Alice", preferences={"theme": "dark"}, user_id=USER
    )
    service.save_content(
        USER, {"id": "C1", "type": "diary", "title": "Monday", "tags": ["work"]}
    )
    service.save_content(USER, {"id": "C2", "title": "Tuesday"})
    service.save_annotation(
        USER, {"id": "A1", "contentId": "C1", "annotationType": "note", "note": "hm"}
    )
    service.save_conversation(
        USER,
        {"id": "V1", "title": "Chat", "messages": [{"role": "user", "text": "hi"}]},
    )
    service.update_user_ai_memory(USER, {"likes": ["tea"]})
    yield service
    service.close()


@pytest.fixture
def backup_service(db_service):
    """Create a backup service."""
    return BackupService(db_service)


def without_version(items):
    """Drop the version counter, which every write bumps."""
    return [{k: v for k, v in item.items() if k != "version"} for item in items]


class TestCountSnapshotItems:
    """Test snapshot item counting."""

    def test_counts_lists_and_documents(self):
        """Test each list entry and each present document counts once."""
        snapshot = {
            "contents": [{}, {}],
            "annotations": [{}],
            "conversations": [],
            "preferences": {},
            "memory": {"a": 1},
        }
        assert count_snapshot_items(snapshot) == 5

    def test_missing_keys(self):
        """Test absent collections and documents count as zero."""
        assert count_snapshot_items({}) == 0


class TestCreateBackup:
    """Test creating backups."""

    def test_create_backup(self, backup_service, db_service):
        """Test a backup records counts, size and type."""
        backup = backup_service.create_backup(USER)

        assert backup.user_id == USER
        assert backup.type == BackupType.MANUAL
        # 2 contents, 1 annotation, 1 conversation, preferences, memory
        assert backup.item_count == 6
        assert backup.size > 0
        assert backup.metadata["version"] == "1.0"
        assert backup.metadata["data_types"] == [
            "contents",
            "annotations",
            "preferences",
            "memory",
            "conversations",
        ]
        assert backup.metadata["content_count"] == 2
        assert backup.metadata["conversation_count"] == 1

        stored = db_service.get_backup(USER, backup.id)
        assert stored.item_count == 6
        snapshot = json.loads(db_service.get_backup_data(USER, backup.id))
        assert len(snapshot["contents"]) == 2
        assert snapshot["memory"] == {"likes": ["tea"]}
        assert backup.size == len(db_service.get_backup_data(USER, backup.id).encode())

    def test_automatic_backup(self, backup_service):
        """Test the backup type can be given by name."""
        backup = backup_service.create_backup(USER, "automatic")
        assert backup.type == BackupType.AUTOMATIC

    def test_invalid_backup_type(self, backup_service):
        """Test unknown backup types are rejected."""
        with pytest.raises(InvalidArgumentError):
            backup_service.create_backup(USER, "hourly")

    def test_unknown_user(self, backup_service):
        """Test backing up a missing user."""
        with pytest.raises(NotFoundError):
            backup_service.create_backup("nobody")

    def test_storage_failure(self, backup_service, db_service):
        """Test a failed write surfaces as a sync failure."""
        with patch.object(
            db_service, "save_backup", side_effect=StorageFailureError("disk full")
        ):
            with pytest.raises(SyncFailureError):
                backup_service.create_backup(USER)
        assert backup_service.list_backups(USER) == []

    def test_list_backups_newest_first(self, backup_service):
        """Test backups are listed newest first."""
        first = backup_service.create_backup(USER)
        second = backup_service.create_backup(USER, BackupType.AUTOMATIC)

        backups = backup_service.list_backups(USER)
        assert [b.id for b in backups] == [second.id, first.id]


class TestRestoreBackup:
    """Test restoring backups."""

    def test_restore_round_trip(self, backup_service, db_service):
        """Test restoring brings back the data as it was at backup time."""
        contents = db_service.get_all_user_contents(USER)
        annotations = db_service.get_all_user_annotations(USER)
        conversations = db_service.get_user_conversations(USER)
        backup = backup_service.create_backup(USER)

        db_service.save_content(USER, {"id": "C1", "title": "Rewritten"})
        db_service.delete_content(USER, "C2")
        db_service.delete_annotation(USER, "A1")
        db_service.update_user_preferences(USER, {"theme": "light"})
        db_service.update_user_ai_memory(USER, {})

        result = backup_service.restore_from_backup(USER, backup.id)

        assert result.success
        assert result.restored_items == backup.item_count
        assert without_version(db_service.get_all_user_contents(USER)) == (
            without_version(contents)
        )
        assert without_version(db_service.get_all_user_annotations(USER)) == (
            without_version(annotations)
        )
        assert db_service.get_user_conversations(USER) == conversations
        assert db_service.get_user_preferences(USER) == {"theme": "dark"}
        assert db_service.get_user_ai_memory(USER) == {"likes": ["tea"]}

    def test_restore_keeps_newer_items(self, backup_service, db_service):
        """Test items created after the backup are left alone."""
        backup = backup_service.create_backup(USER)
        db_service.save_content(USER, {"id": "C3", "title": "Later"})

        backup_service.restore_from_backup(USER, backup.id)

        assert db_service.get_content(USER, "C3")["title"] == "Later"

    def test_restore_unknown_backup(self, backup_service):
        """Test restoring a missing backup."""
        with pytest.raises(NotFoundError):
            backup_service.restore_from_backup(USER, "missing")

    def test_restore_other_users_backup(self, backup_service, db_service):
        """Test a user cannot restore another user's backup."""
        backup = backup_service.create_backup(USER)
        db_service.create_user("bob@example.com", "Bob", user_id="user-2")
        with pytest.raises(NotFoundError):
            backup_service.restore_from_backup("user-2", backup.id)

    def test_restore_storage_failure(self, backup_service, db_service):
        """Test a failed write partway surfaces as a sync failure."""
        backup = backup_service.create_backup(USER)
        with patch.object(
            db_service,
            "save_annotation",
            side_effect=StorageFailureError("database is locked"),
        ):
            with pytest.raises(SyncFailureError):
                backup_service.restore_from_backup(USER, backup.id)

    def test_restore_unreadable_backup(self, backup_service, db_service):
        """Test a failed snapshot read surfaces as a sync failure."""
        backup = backup_service.create_backup(USER)
        with patch.object(
            db_service,
            "get_backup_data",
            side_effect=StorageFailureError("database is locked"),
        ):
            with pytest.raises(SyncFailureError):
                backup_service.restore_from_backup(USER, backup.id)
        assert db_service.get_content(USER, "C1")["title"] == "Monday"
