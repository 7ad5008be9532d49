"""Tests for remote record mapping."""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from commesse.models import Project, SessionState, WorkSession
from commesse.rounding import RoundingRule
from commesse.sync.records import (
    RECORD_TYPE_PROJECT,
    RECORD_TYPE_WORK_SESSION,
    RemoteRecord,
    project_from_record,
    project_to_record,
    record_key,
    session_from_record,
    session_to_record,
)

T0 = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


class TestRecordKey:
    def test_format(self):
        """Test record key format."""
        local_id = uuid.UUID("12345678-1234-5678-1234-567812345678")

        assert record_key(RECORD_TYPE_WORK_SESSION, local_id) == (
            "WorkSession_12345678-1234-5678-1234-567812345678"
        )


class TestProjectMapping:
    """Tests for project records."""

    def test_to_record_omits_unset_fields(self):
        """Test to record omits unset fields."""
        project = Project(name="Acme", created_at=T0, updated_at=T0)

        record = project_to_record(project)

        assert record.record_type == RECORD_TYPE_PROJECT
        assert record.key == f"Project_{project.id}"
        assert set(record.fields) == {"id", "name", "createdAt", "updatedAt"}

    def test_roundtrip_all_fields(self):
        """Test roundtrip all fields."""
        project = Project(
            name="Acme",
            code="AC",
            color_hex="#112233",
            geofence_lat=45.0,
            geofence_lon=9.0,
            geofence_radius=100.0,
            hourly_rate=Decimal("42.5"),
            created_at=T0,
            updated_at=T0 + timedelta(hours=1),
        )

        decoded = project_from_record(project_to_record(project))

        assert decoded == project

    def test_missing_name_is_malformed(self):
        """Test missing name is malformed."""
        record = RemoteRecord(
            record_type=RECORD_TYPE_PROJECT,
            key="Project_x",
            fields={"id": str(uuid.uuid4()), "updatedAt": T0.isoformat()},
        )

        assert project_from_record(record) is None

    def test_missing_created_at_uses_updated_at(self):
        """Test missing created at uses updated at."""
        record = RemoteRecord(
            record_type=RECORD_TYPE_PROJECT,
            key="Project_x",
            fields={"id": str(uuid.uuid4()), "name": "Acme", "updatedAt": "2025-01-06T09:00:00Z"},
        )

        assert project_from_record(record).created_at == T0


class TestSessionMapping:
    """Tests for work session records."""

    def test_to_record_includes_state(self):
        """Test to record includes state."""
        open_session = WorkSession(start=T0)
        closed_session = WorkSession(start=T0, end=T0 + timedelta(hours=1))

        assert session_to_record(open_session).fields["state"] == SessionState.OPEN.value
        assert "end" not in session_to_record(open_session).fields
        assert session_to_record(closed_session).fields["state"] == SessionState.CLOSED.value

    def test_roundtrip(self):
        """Test a session survives encoding and decoding."""
        session = WorkSession(
            start=T0,
            end=T0 + timedelta(hours=3, minutes=47),
            break_minutes=30,
            note="On site",
            project_id=uuid.uuid4(),
            rounding=RoundingRule.NEAREST_15,
            created_at=T0,
            updated_at=T0 + timedelta(hours=4),
        )

        decoded = session_from_record(session_to_record(session))

        assert decoded == session

    def test_optional_fields_absent(self):
        """Test optional fields absent."""
        session = WorkSession(start=T0, created_at=T0, updated_at=T0)

        decoded = session_from_record(session_to_record(session))

        assert decoded.note is None
        assert decoded.project_id is None
        assert decoded.end is None

    def test_state_ignored_in_favour_of_end(self):
        """Test state ignored in favour of end."""
        record = session_to_record(WorkSession(start=T0, created_at=T0, updated_at=T0))
        record.fields["state"] = "closed"

        assert session_from_record(record).is_open

    def test_bad_values_fall_back(self):
        """Test that unparseable optional values decode to their defaults."""
        record = session_to_record(WorkSession(start=T0, created_at=T0, updated_at=T0))
        record.fields["breakMinutes"] = "ten"
        record.fields["rounding"] = "nearest7"
        record.fields["projectID"] = "not-a-uuid"

        decoded = session_from_record(record)

        assert decoded.break_minutes == 0
        assert decoded.rounding is RoundingRule.OFF
        assert decoded.project_id is None

    def test_missing_start_is_malformed(self):
        """Test missing start is malformed."""
        record = session_to_record(WorkSession(start=T0))
        del record.fields["start"]

        assert session_from_record(record) is None


class TestRemoteRecordDict:
    def test_from_dict(self):
        """Test building a record from a wire dict."""
        record = RemoteRecord.from_dict(
            {
                "recordType": "Project",
                "key": "Project_1",
                "fields": {"name": "Acme"},
                "changeTag": "abc",
                "modifiedAt": "2025-01-06T09:00:00Z",
            }
        )

        assert record.change_tag == "abc"
        assert record.modified_at == T0
        assert record.to_dict()["fields"] == {"name": "Acme"}
