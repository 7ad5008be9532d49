"""Tests for the SQLite local store."""

import sqlite3
import tempfile
import threading
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from commesse.models import Expense, Project, WorkSession
from commesse.rounding import RoundingRule
from commesse.storage import LocalStore, StorageError

T0 = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


class TestLocalStore:
    """Tests for LocalStore."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = Path(self.temp_dir) / "test.db"
        self.store = LocalStore(db_path=self.db_path)

    def teardown_method(self):
        self.store.close()

    def test_creates_database_file(self):
        """Test creates database file."""
        assert self.db_path.exists()

    def test_project_roundtrip(self):
        """Test project roundtrip."""
        project = Project(
            name="Acme",
            code="AC-1",
            color_hex="#FF8800",
            geofence_lat=45.46,
            geofence_lon=9.19,
            geofence_radius=150.0,
            hourly_rate=Decimal("42.50"),
        )
        self.store.insert_project(project)

        loaded = self.store.get_project(project.id)

        assert loaded == project
        assert loaded.hourly_rate == Decimal("42.50")

    def test_get_project_none_or_dangling(self):
        """Test get project none or dangling."""
        assert self.store.get_project(None) is None
        assert self.store.get_project(uuid.uuid4()) is None

    def test_find_project_by_name_is_exact(self):
        """Test find project by name is exact."""
        self.store.insert_project(Project(name="Acme"))

        assert self.store.find_project_by_name("Acme") is not None
        assert self.store.find_project_by_name("acme") is None

    def test_update_and_delete_project(self):
        """Test update and delete project."""
        project = Project(name="Acme")
        self.store.insert_project(project)

        project.name = "Acme S.p.A."
        self.store.update_project(project)

        assert self.store.get_project(project.id).name == "Acme S.p.A."
        assert self.store.delete_project(project.id) is True
        assert self.store.delete_project(project.id) is False

    def test_session_roundtrip(self):
        """Test session roundtrip."""
        session = WorkSession(
            start=T0,
            end=T0 + timedelta(hours=2),
            break_minutes=15,
            note="Site visit",
            project_id=uuid.uuid4(),
            rounding=RoundingRule.NEAREST_15,
            override_hourly_rate=Decimal("50"),
        )
        self.store.insert_session(session)

        loaded = self.store.get_session(session.id)

        assert loaded == session

    def test_open_session_roundtrip(self):
        """Test open session roundtrip."""
        session = WorkSession(start=T0)
        self.store.insert_session(session)

        loaded = self.store.get_session(session.id)

        assert loaded.end is None
        assert loaded.is_open

    def test_find_sessions_newest_first_within_range(self):
        """Test find sessions newest first within range."""
        for hours in (0, 24, 48):
            self.store.insert_session(
                WorkSession(start=T0 + timedelta(hours=hours), end=T0 + timedelta(hours=hours + 1))
            )

        found = self.store.find_sessions(start_from=T0, start_to=T0 + timedelta(hours=24))

        assert [s.start for s in found] == [T0 + timedelta(hours=24), T0]

    def test_find_sessions_filters(self):
        """Test find sessions filters."""
        project_id = uuid.uuid4()
        closed = WorkSession(start=T0, end=T0 + timedelta(hours=1), project_id=project_id)
        open_session = WorkSession(start=T0 + timedelta(hours=2))
        self.store.insert_session(closed)
        self.store.insert_session(open_session)

        assert [s.id for s in self.store.find_sessions(open_only=True)] == [open_session.id]
        assert [s.id for s in self.store.find_sessions(closed_only=True)] == [closed.id]
        assert [s.id for s in self.store.find_sessions(project_id=project_id)] == [closed.id]
        assert [s.id for s in self.store.find_sessions(exclude_id=closed.id)] == [open_session.id]
        assert self.store.find_sessions(start_before=T0) == []

    def test_naive_start_stored_as_utc(self):
        """Test naive start stored as utc."""
        session = WorkSession(start=datetime(2025, 1, 6, 9, 0))
        self.store.insert_session(session)

        assert self.store.get_session(session.id).start == T0

    def test_delete_session(self):
        """Test delete session."""
        session = WorkSession(start=T0)
        self.store.insert_session(session)

        assert self.store.delete_session(session.id) is True
        assert self.store.get_session(session.id) is None

    def test_expenses_by_date_range(self):
        """Test expenses by date range."""
        for day in (1, 15, 31):
            self.store.insert_expense(
                Expense(amount=Decimal("10.00"), category="Meals", date=date(2025, 1, day))
            )
        self.store.insert_expense(
            Expense(amount=Decimal("5.00"), category="Meals", date=date(2025, 2, 1))
        )

        found = self.store.find_expenses(date_from=date(2025, 1, 1), date_to=date(2025, 1, 31))

        assert [e.date.day for e in found] == [31, 15, 1]
        assert found[0].amount == Decimal("10.00")

    def test_expense_receipt_blob(self):
        """Test expense receipt blob."""
        expense = Expense(
            amount=Decimal("3.20"), category="Transport", date=date(2025, 1, 2), receipt=b"\x89PNG"
        )
        self.store.insert_expense(expense)

        assert self.store.find_expenses()[0].receipt == b"\x89PNG"

    def test_sync_state_upsert(self):
        """Test sync state upsert."""
        assert self.store.get_state("k") is None

        self.store.set_state("k", "one")
        self.store.set_state("k", "two")

        assert self.store.get_state("k") == "two"
        self.store.delete_state("k")
        assert self.store.get_state("k") is None

    def test_purge_state_by_prefix(self):
        """Test purge state by prefix."""
        self.store.set_state("CKServerChangeToken_Project", "a")
        self.store.set_state("CKServerChangeToken_WorkSession", "b")
        self.store.set_state("change_tag:Project_1", "c")
        # Underscore must not act as a LIKE wildcard
        self.store.set_state("CKServerChangeTokenXProject", "d")

        removed = self.store.purge_state(["CKServerChangeToken_"])

        assert removed == 2
        assert self.store.get_state("change_tag:Project_1") == "c"
        assert self.store.get_state("CKServerChangeTokenXProject") == "d"

    def test_duplicate_id_raises_storage_error(self):
        """Test duplicate id raises storage error."""
        session = WorkSession(start=T0)
        self.store.insert_session(session)

        with pytest.raises(StorageError) as exc_info:
            self.store.insert_session(session)

        assert exc_info.value.code

    def test_connections_are_per_thread(self):
        """Test connections are per thread."""
        session = WorkSession(start=T0)
        self.store.insert_session(session)
        found = []

        def worker():
            found.append(self.store.get_session(session.id))

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()

        assert found[0].id == session.id
        assert len(self.store._connections) == 2


class TestStorageError:
    def test_from_sqlite_uses_error_name(self):
        """Test from sqlite uses error name."""
        error = sqlite3.IntegrityError("UNIQUE constraint failed")
        error.sqlite_errorname = "SQLITE_CONSTRAINT_PRIMARYKEY"

        wrapped = StorageError.from_sqlite(error)

        assert wrapped.code == "SQLITE_CONSTRAINT_PRIMARYKEY"
        assert "UNIQUE" in str(wrapped)

    def test_from_sqlite_falls_back_to_class_name(self):
        """Test from sqlite falls back to class name."""
        wrapped = StorageError.from_sqlite(sqlite3.OperationalError("disk I/O error"))

        assert wrapped.code == "OperationalError"
