"""Tests for sync data models."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from experience_core.models import (
    AnnotationPayload,
    ChangeType,
    ContentPayload,
    PreferencePayload,
    ResourceType,
    SyncChange,
    SyncConflict,
    SyncStatus,
)
from experience_core.utils.timeutils import EPOCH, to_naive_utc


class TestSyncChange:
    """Test SyncChange validation."""

    def test_parse_camel_case(self):
        """Test parsing a change as sent by a device."""
        change = SyncChange.model_validate(
            {
                "id": "ch1",
                "type": "update",
                "resourceType": "content",
                "resourceId": "c1",
                "data": {"title": "A"},
                "timestamp": "2024-05-01T10:00:00Z",
                "deviceId": "laptop",
                "version": 3,
            }
        )
        assert change.type == ChangeType.UPDATE
        assert change.resource_type == ResourceType.CONTENT
        assert change.timestamp == datetime(2024, 5, 1, 10, 0, 0)
        assert change.timestamp.tzinfo is None
        assert change.version == 3

    def test_aware_timestamp_normalized_to_utc(self):
        """Test offsets are converted to naive UTC."""
        change = SyncChange(
            type=ChangeType.DELETE,
            resource_type=ResourceType.CONTENT,
            resource_id="c1",
            timestamp=datetime(2024, 5, 1, 12, 0, tzinfo=timezone(timedelta(hours=2))),
            device_id="laptop",
        )
        assert change.timestamp == datetime(2024, 5, 1, 10, 0)

    def test_update_requires_data(self):
        """Test create and update changes must carry data."""
        with pytest.raises(ValidationError):
            SyncChange(
                type=ChangeType.UPDATE,
                resource_type=ResourceType.CONTENT,
                resource_id="c1",
                device_id="laptop",
            )

    def test_unknown_resource_type(self):
        """Test resource types outside the four families are rejected."""
        with pytest.raises(ValidationError):
            SyncChange.model_validate(
                {
                    "type": "update",
                    "resourceType": "photo",
                    "resourceId": "ph1",
                    "data": {},
                    "deviceId": "laptop",
                }
            )

    def test_change_is_frozen(self):
        """Test changes are immutable once built."""
        change = SyncChange(
            type=ChangeType.DELETE,
            resource_type=ResourceType.MEMORY,
            resource_id="m",
            device_id="laptop",
        )
        with pytest.raises(ValidationError):
            change.device_id = "other"

    def test_payload_typed_by_resource(self):
        """Test data validates into the payload model of its resource."""
        content = SyncChange(
            type=ChangeType.CREATE,
            resource_type=ResourceType.CONTENT,
            resource_id="c1",
            data={"title": "A", "mood": "happy"},
            device_id="laptop",
        )
        payload = content.payload()
        assert isinstance(payload, ContentPayload)
        assert payload.title == "A"
        # Unknown fields survive
        assert payload.model_dump()["mood"] == "happy"

        prefs = SyncChange(
            type=ChangeType.UPDATE,
            resource_type=ResourceType.PREFERENCE,
            resource_id="prefs",
            data={"theme": "dark"},
            device_id="laptop",
        )
        assert isinstance(prefs.payload(), PreferencePayload)

    def test_annotation_payload_requires_content_id(self):
        """Test annotation payloads must name their content."""
        with pytest.raises(ValidationError):
            AnnotationPayload.model_validate({"note": "x"})

    def test_str(self):
        """Test string representation."""
        change = SyncChange(
            type=ChangeType.DELETE,
            resource_type=ResourceType.ANNOTATION,
            resource_id="a1",
            timestamp=datetime(2024, 1, 1),
            device_id="phone",
        )
        assert str(change) == "[delete] annotation:a1 from phone @ 2024-01-01T00:00:00"


class TestOtherModels:
    """Test conflict and status models."""

    def test_conflict_str(self):
        """Test conflict string representation."""
        conflict = SyncConflict(resource_type=ResourceType.CONTENT, resource_id="c1")
        assert str(conflict) == "concurrent_update: content:c1"
        assert conflict.id

    def test_status_defaults(self):
        """Test a device that never synced reports the epoch."""
        status = SyncStatus(user_id="u", device_id="d")
        assert status.last_sync_time == EPOCH
        assert status.pending_changes == 0

    def test_to_naive_utc_keeps_naive(self):
        """Test naive datetimes are assumed UTC."""
        value = datetime(2024, 1, 1, 8, 30)
        assert to_naive_utc(value) is value
