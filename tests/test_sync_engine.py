"""Tests for the sync engine (full and delta sync)."""

import gc
import threading
from datetime import timedelta
from unittest.mock import patch

import pytest

from experience_core.core.sync import SyncEngine, UserLockRegistry
from experience_core.database.service import DatabaseService
from experience_core.exceptions import (
    InvalidArgumentError,
    NotFoundError,
    StorageFailureError,
    SyncFailureError,
)
from experience_core.models import (
    ChangeType,
    ConflictType,
    ResourceType,
    SyncChange,
)
from experience_core.utils.timeutils import utcnow

USER = "user-1"


@pytest.fixture
def db_service(tmp_path):
    """Create a temporary database service with one user and two devices."""
    service = DatabaseService(tmp_path / "test.db")
    service.create_user("alice@example.com", "Alice", user_id=USER)
    service.register_device(USER, "desktop", "macos", "1.0", "Laptop", device_id="laptop")
    service.register_device(USER, "mobile", "ios", "1.0", "Phone", device_id="phone")
    yield service
    service.close()


@pytest.fixture
def engine(db_service):
    """Create a sync engine."""
    return SyncEngine(db_service)


@pytest.fixture
def t0():
    """Last sync time of the devices, a minute in the past."""
    return utcnow() - timedelta(minutes=1)


def change(
    resource_id,
    device_id,
    timestamp,
    data=None,
    type=ChangeType.UPDATE,
    resource_type=ResourceType.CONTENT,
    **kwargs,
):
    """Build a SyncChange."""
    return SyncChange(
        type=type,
        resource_type=resource_type,
        resource_id=resource_id,
        data=data,
        timestamp=timestamp,
        device_id=device_id,
        **kwargs,
    )


class TestFullSync:
    """Test full sync."""

    def test_counts_all_resources(self, engine, db_service):
        """Test synced items covers contents, annotations and both documents."""
        db_service.save_content(USER, {"id": "c1"})
        db_service.save_content(USER, {"id": "c2"})
        db_service.save_annotation(USER, {"id": "a1", "contentId": "c1"})
        db_service.update_user_preferences(USER, {"theme": "dark"})

        result = engine.perform_full_sync(USER, "laptop")

        assert result.success
        assert result.synced_items == 5
        assert result.conflicts == 0

    def test_empty_documents_still_count(self, engine):
        """Test preferences and memory count even when empty."""
        assert engine.perform_full_sync(USER, "laptop").synced_items == 2

    def test_idempotent(self, engine, db_service):
        """Test a second full sync yields the same items and no new conflicts."""
        db_service.save_content(USER, {"id": "c1"})
        db_service.append_change(
            USER, change("c1", "phone", utcnow(), type=ChangeType.DELETE)
        )

        first = engine.perform_full_sync(USER, "laptop")
        second = engine.perform_full_sync(USER, "laptop")

        assert first.synced_items == second.synced_items
        assert first.conflicts == 1
        assert second.conflicts == 0
        assert db_service.get_conflicts_count(USER) == 1

    def test_deleted_but_present_conflict(self, engine, db_service):
        """Test a resource deleted in the log but still stored is flagged."""
        db_service.save_content(USER, {"id": "c1", "title": "Still here"})
        db_service.append_change(
            USER, change("c1", "phone", utcnow(), type=ChangeType.DELETE)
        )

        engine.perform_full_sync(USER, "laptop")

        [conflict] = db_service.get_user_conflicts(USER)
        assert conflict.conflict_type == ConflictType.DELETE_UPDATE
        assert conflict.resource_id == "c1"
        assert conflict.local_version["title"] == "Still here"
        assert conflict.remote_version is None

    def test_latest_change_not_delete_is_no_conflict(self, engine, db_service):
        """Test a later update after a delete clears the delete."""
        now = utcnow()
        db_service.save_content(USER, {"id": "c1"})
        db_service.append_change(
            USER, change("c1", "phone", now, type=ChangeType.DELETE)
        )
        db_service.append_change(
            USER, change("c1", "laptop", now + timedelta(seconds=1), data={"id": "c1"})
        )

        assert engine.perform_full_sync(USER, "laptop").conflicts == 0

    def test_records_history(self, engine, db_service):
        """Test full sync moves the device's last sync time."""
        result = engine.perform_full_sync(USER, "laptop")

        assert db_service.get_last_sync_time(USER, "laptop") == result.timestamp
        [entry] = db_service.get_sync_history(USER, "laptop")["items"]
        assert entry["sync_type"] == "full"
        assert entry["status"] == "completed"
        assert entry["synced_items"] == result.synced_items

    def test_unknown_device(self, engine):
        """Test full sync for an unregistered device."""
        with pytest.raises(NotFoundError):
            engine.perform_full_sync(USER, "tablet")

    def test_storage_failure(self, engine, db_service):
        """Test storage errors surface as SyncFailureError."""
        with patch.object(
            db_service,
            "get_all_user_contents",
            side_effect=StorageFailureError("disk I/O error"),
        ):
            with pytest.raises(SyncFailureError):
                engine.perform_full_sync(USER, "laptop")


class TestDeltaSync:
    """Test delta sync."""

    def test_applies_change_without_remote(self, engine, db_service, t0):
        """Test a local change with no remote changes is applied."""
        local = change(
            "C1", "laptop", t0 + timedelta(seconds=5), data={"title": "A"}
        )

        result = engine.perform_delta_sync(USER, "laptop", t0, [local])

        assert result.applied_changes == 1
        assert result.conflicts == 0
        assert db_service.get_content(USER, "C1")["title"] == "A"
        assert db_service.has_change(USER, local.id)

    def test_newer_remote_change_conflicts(self, engine, db_service, t0):
        """Test a newer remote change blocks the local change."""
        remote = change("C1", "phone", t0 + timedelta(seconds=10), data={"title": "B"})
        engine.perform_delta_sync(USER, "phone", t0, [remote])

        local = change("C1", "laptop", t0 + timedelta(seconds=5), data={"title": "A"})
        result = engine.perform_delta_sync(USER, "laptop", t0, [local])

        assert result.applied_changes == 0
        assert result.conflicts == 1
        [conflict] = db_service.get_user_conflicts(USER)
        assert conflict.conflict_type == ConflictType.CONCURRENT_UPDATE
        assert conflict.local_version == {"title": "A"}
        assert conflict.remote_version == {"title": "B"}
        assert db_service.get_content(USER, "C1")["title"] == "B"
        assert not db_service.has_change(USER, local.id)

    @pytest.mark.parametrize("remote_offset", [5, 10])
    def test_older_or_equal_remote_change_applies(
        self, engine, db_service, t0, remote_offset
    ):
        """Test remote changes not newer than the local change do not conflict."""
        remote = change(
            "C1", "phone", t0 + timedelta(seconds=remote_offset), data={"title": "B"}
        )
        engine.perform_delta_sync(USER, "phone", t0, [remote])

        local = change("C1", "laptop", t0 + timedelta(seconds=10), data={"title": "A"})
        result = engine.perform_delta_sync(USER, "laptop", t0, [local])

        assert result.applied_changes == 1
        assert result.conflicts == 0
        assert db_service.get_content(USER, "C1")["title"] == "A"

    def test_other_resource_does_not_conflict(self, engine, db_service, t0):
        """Test conflicts are per resource."""
        engine.perform_delta_sync(
            USER,
            "phone",
            t0,
            [change("C2", "phone", t0 + timedelta(seconds=10), data={"title": "B"})],
        )
        result = engine.perform_delta_sync(
            USER,
            "laptop",
            t0,
            [change("C1", "laptop", t0 + timedelta(seconds=5), data={"title": "A"})],
        )
        assert result.applied_changes == 1
        assert result.conflicts == 0

    def test_echo_suppression(self, engine, t0):
        """Test the caller's own changes are not sent back."""
        engine.perform_delta_sync(
            USER,
            "laptop",
            t0,
            [change("C1", "laptop", t0 + timedelta(seconds=5), data={"title": "A"})],
        )
        phone_change = change("C2", "phone", t0 + timedelta(seconds=6), data={"x": 1})
        engine.perform_delta_sync(USER, "phone", t0, [phone_change])

        result = engine.perform_delta_sync(USER, "laptop", t0, [])

        assert [c.id for c in result.server_changes] == [phone_change.id]
        assert all(c.device_id != "laptop" for c in result.server_changes)

    def test_server_changes_respect_last_sync_time(self, engine, t0):
        """Test only changes after the device's last sync are returned."""
        engine.perform_delta_sync(
            USER,
            "phone",
            t0,
            [change("C1", "phone", t0 + timedelta(seconds=5), data={"title": "A"})],
        )
        result = engine.perform_delta_sync(
            USER, "laptop", t0 + timedelta(seconds=5), []
        )
        assert result.server_changes == []

    def test_change_attributed_to_calling_device(self, engine, db_service, t0):
        """Test the log records the submitting device."""
        submitted = change(
            "C1", "someone-else", t0 + timedelta(seconds=5), data={"title": "A"}
        )
        engine.perform_delta_sync(USER, "laptop", t0, [submitted])

        [logged] = db_service.get_changes_after(USER, t0)
        assert logged.device_id == "laptop"

    def test_resubmitted_batch_is_not_applied_twice(self, engine, db_service, t0):
        """Test a batch sent twice leaves one log entry per change."""
        batch = [
            change("C1", "laptop", t0 + timedelta(seconds=1), data={"title": "A"}),
            change("C2", "laptop", t0 + timedelta(seconds=2), data={"title": "B"}),
        ]
        engine.perform_delta_sync(USER, "laptop", t0, batch)
        result = engine.perform_delta_sync(USER, "laptop", t0, batch)

        assert result.applied_changes == 2
        assert result.failed_changes == 0
        assert len(db_service.get_changes_after(USER, t0)) == 2
        assert db_service.get_content(USER, "C1")["version"] == 1

    def test_delete_content(self, engine, db_service, t0):
        """Test delete changes remove content."""
        db_service.save_content(USER, {"id": "C1"})
        result = engine.perform_delta_sync(
            USER,
            "laptop",
            t0,
            [change("C1", "laptop", t0 + timedelta(seconds=5), type=ChangeType.DELETE)],
        )
        assert result.applied_changes == 1
        assert db_service.get_content(USER, "C1") is None

    def test_annotation_create(self, engine, db_service, t0):
        """Test annotation changes use the change's resource id."""
        engine.perform_delta_sync(
            USER,
            "laptop",
            t0,
            [
                change(
                    "A1",
                    "laptop",
                    t0 + timedelta(seconds=5),
                    data={"contentId": "C1", "note": "hi"},
                    type=ChangeType.CREATE,
                    resource_type=ResourceType.ANNOTATION,
                )
            ],
        )
        assert db_service.get_annotation(USER, "A1")["note"] == "hi"

    def test_preference_and_memory_documents(self, engine, db_service, t0):
        """Test preference and memory changes replace or reset documents."""
        db_service.update_user_preferences(USER, {"theme": "dark", "lang": "en"})
        engine.perform_delta_sync(
            USER,
            "laptop",
            t0,
            [
                change(
                    "prefs",
                    "laptop",
                    t0 + timedelta(seconds=1),
                    data={"theme": "light"},
                    resource_type=ResourceType.PREFERENCE,
                ),
                change(
                    "memory",
                    "laptop",
                    t0 + timedelta(seconds=2),
                    data={"facts": ["likes tea"]},
                    resource_type=ResourceType.MEMORY,
                ),
            ],
        )
        assert db_service.get_user_preferences(USER) == {"theme": "light"}
        assert db_service.get_user_ai_memory(USER) == {"facts": ["likes tea"]}

        engine.perform_delta_sync(
            USER,
            "laptop",
            t0,
            [
                change(
                    "prefs",
                    "laptop",
                    t0 + timedelta(seconds=3),
                    type=ChangeType.DELETE,
                    resource_type=ResourceType.PREFERENCE,
                )
            ],
        )
        assert db_service.get_user_preferences(USER) == {}

    def test_invalid_change_is_skipped(self, engine, db_service, t0):
        """Test one bad change does not stop the batch."""
        bad = change(
            "A1",
            "laptop",
            t0 + timedelta(seconds=1),
            data={"note": "missing content id"},
            resource_type=ResourceType.ANNOTATION,
        )
        good = change("C1", "laptop", t0 + timedelta(seconds=2), data={"title": "A"})

        result = engine.perform_delta_sync(USER, "laptop", t0, [bad, good])

        assert result.failed_changes == 1
        assert result.applied_changes == 1
        assert result.conflicts == 0
        assert db_service.get_annotation(USER, "A1") is None
        [entry] = db_service.get_sync_history(USER, "laptop")["items"]
        assert entry["status"] == "partial"

    def test_apply_and_log_are_atomic(self, engine, db_service, t0):
        """Test a failing log append rolls back the applied write."""
        local = change("C1", "laptop", t0 + timedelta(seconds=5), data={"title": "A"})
        with patch.object(
            db_service, "append_change", side_effect=StorageFailureError("disk full")
        ):
            result = engine.perform_delta_sync(USER, "laptop", t0, [local])

        assert result.failed_changes == 1
        assert db_service.get_content(USER, "C1") is None

    def test_lost_version_race_becomes_conflict(self, engine, db_service, t0):
        """Test a write that loses the version check is recorded as a conflict."""
        db_service.save_content(USER, {"id": "C1", "title": "Stored"})
        local = change("C1", "laptop", t0 + timedelta(seconds=5), data={"title": "A"})

        # Simulate another writer bumping the row after the version was read
        with patch.object(engine.applier, "current_version", return_value=0):
            result = engine.perform_delta_sync(USER, "laptop", t0, [local])

        assert result.conflicts == 1
        assert result.applied_changes == 0
        [conflict] = db_service.get_user_conflicts(USER)
        assert conflict.conflict_type == ConflictType.CONCURRENT_UPDATE
        assert conflict.local_version == {"title": "A"}
        assert conflict.remote_version["title"] == "Stored"
        assert db_service.get_content(USER, "C1")["title"] == "Stored"

    def test_change_logged_during_sync_becomes_conflict(
        self, engine, db_service, t0
    ):
        """Test a newer change committed after the log read still blocks the write."""
        read_log = db_service.get_changes_after

        def read_then_other_writer(user_id, timestamp):
            changes = read_log(user_id, timestamp)
            # Another process writes between the log read and the apply
            db_service.save_content(user_id, {"id": "C1", "title": "B"})
            db_service.append_change(
                user_id,
                change("C1", "phone", t0 + timedelta(seconds=10), data={"title": "B"}),
            )
            return changes

        local = change("C1", "laptop", t0 + timedelta(seconds=5), data={"title": "A"})
        with patch.object(
            db_service, "get_changes_after", side_effect=read_then_other_writer
        ):
            result = engine.perform_delta_sync(USER, "laptop", t0, [local])

        assert result.applied_changes == 0
        assert result.conflicts == 1
        [conflict] = db_service.get_user_conflicts(USER)
        assert conflict.local_version == {"title": "A"}
        assert conflict.remote_version == {"title": "B"}
        assert db_service.get_content(USER, "C1")["title"] == "B"
        assert not db_service.has_change(USER, local.id)

    def test_resubmitted_conflicting_change_is_recorded_once(
        self, engine, db_service, t0
    ):
        """Test retrying a batch does not duplicate its conflicts."""
        remote = change("C1", "phone", t0 + timedelta(seconds=10), data={"title": "B"})
        engine.perform_delta_sync(USER, "phone", t0, [remote])

        local = change(
            "C1", "laptop", t0 + timedelta(seconds=5), data={"title": "A"}, id="ch-A"
        )
        first = engine.perform_delta_sync(USER, "laptop", t0, [local])
        second = engine.perform_delta_sync(USER, "laptop", t0, [local])

        assert first.conflicts == 1
        assert second.conflicts == 1
        assert second.applied_changes == 0
        [conflict] = db_service.get_user_conflicts(USER)
        assert conflict.change_id == "ch-A"
        assert db_service.get_conflicts_count(USER) == 1

    def test_unknown_payload_fields_reach_other_devices(self, engine, db_service, t0):
        """Test fields unknown to the server are passed on through the log."""
        engine.perform_delta_sync(
            USER,
            "laptop",
            t0,
            [
                change(
                    "C1",
                    "laptop",
                    t0 + timedelta(seconds=5),
                    data={"title": "A", "mood": "calm"},
                )
            ],
        )

        result = engine.perform_delta_sync(USER, "phone", t0, [])

        [received] = result.server_changes
        assert received.data == {"title": "A", "mood": "calm"}
        assert "mood" not in db_service.get_content(USER, "C1")

    def test_device_lookup_failure(self, engine, db_service, t0):
        """Test a failed device lookup surfaces as SyncFailureError."""
        with patch.object(
            db_service, "get_device", side_effect=StorageFailureError("disk I/O error")
        ):
            with pytest.raises(SyncFailureError):
                engine.perform_delta_sync(USER, "laptop", t0, [])
            with pytest.raises(SyncFailureError):
                engine.perform_full_sync(USER, "laptop")

    def test_records_history(self, engine, db_service, t0):
        """Test delta sync records a completed run."""
        result = engine.perform_delta_sync(
            USER,
            "laptop",
            t0,
            [change("C1", "laptop", t0 + timedelta(seconds=5), data={"title": "A"})],
        )
        [entry] = db_service.get_sync_history(USER, "laptop")["items"]
        assert entry["sync_type"] == "delta"
        assert entry["status"] == "completed"
        assert entry["synced_items"] == 1
        assert db_service.get_last_sync_time(USER, "laptop") == result.timestamp

    def test_unknown_device(self, engine, t0):
        """Test delta sync for an unregistered device."""
        with pytest.raises(NotFoundError):
            engine.perform_delta_sync(USER, "tablet", t0, [])

    def test_validate_changes(self, engine):
        """Test raw change mappings are parsed or rejected."""
        [parsed] = engine.validate_changes(
            [
                {
                    "type": "create",
                    "resourceType": "memory",
                    "resourceId": "memory",
                    "data": {},
                    "deviceId": "laptop",
                }
            ]
        )
        assert parsed.resource_type == ResourceType.MEMORY

        with pytest.raises(InvalidArgumentError, match="Change #0"):
            engine.validate_changes([{"type": "update"}])


class TestUserLockRegistry:
    """Test per-user locks."""

    def test_reentrant(self):
        """Test the same thread can take a user's lock twice."""
        locks = UserLockRegistry(timeout=0.1)
        with locks.hold("u"):
            with locks.hold("u"):
                pass

    def test_timeout(self):
        """Test waiting on a held lock times out."""
        locks = UserLockRegistry(timeout=0.05)
        acquired = threading.Event()
        release = threading.Event()

        def holder():
            with locks.hold("u"):
                acquired.set()
                release.wait(5)

        thread = threading.Thread(target=holder)
        thread.start()
        try:
            assert acquired.wait(5)
            with pytest.raises(SyncFailureError):
                with locks.hold("u"):
                    pass
            # Other users are not blocked
            with locks.hold("v"):
                pass
        finally:
            release.set()
            thread.join()

    def test_released_locks_are_dropped(self):
        """Test the registry does not keep locks of idle users."""
        locks = UserLockRegistry()
        for i in range(100):
            with locks.hold(f"user-{i}"):
                assert f"user-{i}" in locks._locks
        gc.collect()
        assert len(locks._locks) == 0

    def test_held_lock_is_shared(self):
        """Test callers get the same lock while it is held."""
        locks = UserLockRegistry()
        with locks.hold("u"):
            assert locks._lock_for("u") is locks._lock_for("u")
