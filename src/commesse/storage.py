"""SQLite-backed local store for projects, work sessions and expenses."""

import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Iterator, Optional

from .config import Config
from .models import Expense, Project, WorkSession
from .rounding import RoundingRule, ensure_utc

__all__ = ["LocalStore", "StorageError"]

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Local persistence failure.

    ``code`` carries the SQLite error name (e.g. ``SQLITE_FULL``) when the
    driver exposes it, for support diagnostics.
    """

    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code
        super().__init__(message)

    @classmethod
    def from_sqlite(cls, error: sqlite3.Error) -> "StorageError":
        code = getattr(error, "sqlite_errorname", None) or type(error).__name__
        return cls(f"Storage operation failed: {error}", code=code)


def _ts(value: Optional[datetime]) -> Optional[str]:
    """Fixed-width UTC timestamp so string comparison matches time order."""
    if value is None:
        return None
    return ensure_utc(value).isoformat(timespec="microseconds")


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def _uuid(value: Optional[str]) -> Optional[uuid.UUID]:
    return uuid.UUID(value) if value else None


def _decimal(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


def _text(value) -> Optional[str]:
    return str(value) if value is not None else None


class LocalStore:
    """Local record store.

    Every write commits immediately. Connections are thread-local so the
    sync worker and the caller's thread never share a connection; writes
    from different threads are serialized only by SQLite itself.
    """

    def __init__(self, db_path: Optional[Path] = None, timeout: float = 5.0):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file. Defaults to data dir.
            timeout: Seconds to wait on a locked database.
        """
        if db_path is None:
            db_path = Config.get_data_dir() / "commesse.db"

        self.db_path = Path(db_path)
        self.timeout = timeout
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, "connection"):
            try:
                connection = sqlite3.connect(
                    str(self.db_path), timeout=self.timeout, check_same_thread=False
                )
            except sqlite3.Error as e:
                raise StorageError.from_sqlite(e) from e
            connection.row_factory = sqlite3.Row
            self._local.connection = connection
            with self._connections_lock:
                self._connections.append(connection)
        return self._local.connection

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        """Context manager for database cursor."""
        conn = self._get_connection()
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError.from_sqlite(e) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._cursor() as cursor:
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS projects (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    code TEXT,
                    color_hex TEXT,
                    geofence_lat REAL,
                    geofence_lon REAL,
                    geofence_radius REAL,
                    hourly_rate TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_projects_name ON projects(name)"
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS work_sessions (
                    id TEXT PRIMARY KEY,
                    start_at TEXT NOT NULL,
                    end_at TEXT,
                    break_minutes INTEGER NOT NULL DEFAULT 0,
                    note TEXT,
                    project_id TEXT,
                    rounding TEXT NOT NULL DEFAULT 'off',
                    override_hourly_rate TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_sessions_start ON work_sessions(start_at)"
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS expenses (
                    id TEXT PRIMARY KEY,
                    date TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    category TEXT NOT NULL,
                    note TEXT,
                    project_id TEXT,
                    receipt BLOB,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            # Sync bookkeeping: remote change tags, legacy cursors
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS sync_state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

    # Projects

    @staticmethod
    def _project_from_row(row: sqlite3.Row) -> Project:
        return Project(
            id=uuid.UUID(row["id"]),
            name=row["name"],
            code=row["code"],
            color_hex=row["color_hex"],
            geofence_lat=row["geofence_lat"],
            geofence_lon=row["geofence_lon"],
            geofence_radius=row["geofence_radius"],
            hourly_rate=_decimal(row["hourly_rate"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _project_params(project: Project) -> tuple:
        return (
            project.name,
            project.code,
            project.color_hex,
            project.geofence_lat,
            project.geofence_lon,
            project.geofence_radius,
            _text(project.hourly_rate),
            _ts(project.created_at),
            _ts(project.updated_at),
            str(project.id),
        )

    def insert_project(self, project: Project) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO projects (name, code, color_hex, geofence_lat, geofence_lon,
                    geofence_radius, hourly_rate, created_at, updated_at, id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                self._project_params(project),
            )

    def update_project(self, project: Project) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE projects SET name = ?, code = ?, color_hex = ?, geofence_lat = ?,
                    geofence_lon = ?, geofence_radius = ?, hourly_rate = ?,
                    created_at = ?, updated_at = ?
                WHERE id = ?
                """,
                self._project_params(project),
            )

    def delete_project(self, project_id: uuid.UUID) -> bool:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM projects WHERE id = ?", (str(project_id),))
            return cursor.rowcount > 0

    def get_project(self, project_id: Optional[uuid.UUID]) -> Optional[Project]:
        """Look up a project; a missing or dangling id yields None."""
        if project_id is None:
            return None
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM projects WHERE id = ?", (str(project_id),))
            row = cursor.fetchone()
            return self._project_from_row(row) if row else None

    def find_project_by_name(self, name: str) -> Optional[Project]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM projects WHERE name = ? ORDER BY created_at ASC LIMIT 1",
                (name,),
            )
            row = cursor.fetchone()
            return self._project_from_row(row) if row else None

    def all_projects(self) -> list[Project]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM projects ORDER BY name ASC")
            return [self._project_from_row(row) for row in cursor.fetchall()]

    # Work sessions

    @staticmethod
    def _session_from_row(row: sqlite3.Row) -> WorkSession:
        return WorkSession(
            id=uuid.UUID(row["id"]),
            start=_parse_ts(row["start_at"]),
            end=_parse_ts(row["end_at"]),
            break_minutes=row["break_minutes"],
            note=row["note"],
            project_id=_uuid(row["project_id"]),
            rounding=RoundingRule.parse(row["rounding"]),
            override_hourly_rate=_decimal(row["override_hourly_rate"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _session_params(session: WorkSession) -> tuple:
        return (
            _ts(session.start),
            _ts(session.end),
            session.break_minutes,
            session.note,
            _text(session.project_id),
            session.rounding.value,
            _text(session.override_hourly_rate),
            _ts(session.created_at),
            _ts(session.updated_at),
            str(session.id),
        )

    def insert_session(self, session: WorkSession) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO work_sessions (start_at, end_at, break_minutes, note, project_id,
                    rounding, override_hourly_rate, created_at, updated_at, id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                self._session_params(session),
            )

    def update_session(self, session: WorkSession) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE work_sessions SET start_at = ?, end_at = ?, break_minutes = ?, note = ?,
                    project_id = ?, rounding = ?, override_hourly_rate = ?,
                    created_at = ?, updated_at = ?
                WHERE id = ?
                """,
                self._session_params(session),
            )

    def delete_session(self, session_id: uuid.UUID) -> bool:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM work_sessions WHERE id = ?", (str(session_id),))
            return cursor.rowcount > 0

    def get_session(self, session_id: uuid.UUID) -> Optional[WorkSession]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM work_sessions WHERE id = ?", (str(session_id),)
            )
            row = cursor.fetchone()
            return self._session_from_row(row) if row else None

    def find_sessions(
        self,
        start_from: Optional[datetime] = None,
        start_to: Optional[datetime] = None,
        project_id: Optional[uuid.UUID] = None,
        open_only: bool = False,
        closed_only: bool = False,
        exclude_id: Optional[uuid.UUID] = None,
        start_before: Optional[datetime] = None,
    ) -> list[WorkSession]:
        """Query sessions, newest start first.

        Args:
            start_from: Inclusive lower bound on start
            start_to: Inclusive upper bound on start
            project_id: Only sessions linked to this project
            open_only: Only sessions without an end
            closed_only: Only sessions with an end
            exclude_id: Skip this session
            start_before: Exclusive upper bound on start
        """
        clauses: list[str] = []
        params: list = []
        if start_from is not None:
            clauses.append("start_at >= ?")
            params.append(_ts(start_from))
        if start_to is not None:
            clauses.append("start_at <= ?")
            params.append(_ts(start_to))
        if start_before is not None:
            clauses.append("start_at < ?")
            params.append(_ts(start_before))
        if project_id is not None:
            clauses.append("project_id = ?")
            params.append(str(project_id))
        if open_only:
            clauses.append("end_at IS NULL")
        if closed_only:
            clauses.append("end_at IS NOT NULL")
        if exclude_id is not None:
            clauses.append("id != ?")
            params.append(str(exclude_id))

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._cursor() as cursor:
            cursor.execute(
                f"SELECT * FROM work_sessions {where} ORDER BY start_at DESC", params
            )
            return [self._session_from_row(row) for row in cursor.fetchall()]

    def all_sessions(self) -> list[WorkSession]:
        return self.find_sessions()

    # Expenses

    @staticmethod
    def _expense_from_row(row: sqlite3.Row) -> Expense:
        return Expense(
            id=uuid.UUID(row["id"]),
            date=date.fromisoformat(row["date"]),
            amount=Decimal(row["amount"]),
            category=row["category"],
            note=row["note"],
            project_id=_uuid(row["project_id"]),
            receipt=row["receipt"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    def insert_expense(self, expense: Expense) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO expenses (id, date, amount, category, note, project_id,
                    receipt, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(expense.id),
                    expense.date.isoformat(),
                    str(expense.amount),
                    expense.category,
                    expense.note,
                    _text(expense.project_id),
                    expense.receipt,
                    _ts(expense.created_at),
                    _ts(expense.updated_at),
                ),
            )

    def delete_expense(self, expense_id: uuid.UUID) -> bool:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM expenses WHERE id = ?", (str(expense_id),))
            return cursor.rowcount > 0

    def find_expenses(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        project_id: Optional[uuid.UUID] = None,
    ) -> list[Expense]:
        """Query expenses in an inclusive date range, newest first."""
        clauses: list[str] = []
        params: list = []
        if date_from is not None:
            clauses.append("date >= ?")
            params.append(date_from.isoformat())
        if date_to is not None:
            clauses.append("date <= ?")
            params.append(date_to.isoformat())
        if project_id is not None:
            clauses.append("project_id = ?")
            params.append(str(project_id))

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._cursor() as cursor:
            cursor.execute(
                f"SELECT * FROM expenses {where} ORDER BY date DESC, created_at DESC",
                params,
            )
            return [self._expense_from_row(row) for row in cursor.fetchall()]

    # Sync state

    def get_state(self, key: str) -> Optional[str]:
        with self._cursor() as cursor:
            cursor.execute("SELECT value FROM sync_state WHERE key = ?", (key,))
            row = cursor.fetchone()
            return row["value"] if row else None

    def set_state(self, key: str, value: str) -> None:
        now = _ts(datetime.now(timezone.utc))
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO sync_state (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value, now),
            )

    def delete_state(self, key: str) -> None:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM sync_state WHERE key = ?", (key,))

    def purge_state(self, prefixes: Iterable[str]) -> int:
        """Delete every sync_state entry whose key starts with a prefix."""
        removed = 0
        with self._cursor() as cursor:
            for prefix in prefixes:
                escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
                cursor.execute(
                    "DELETE FROM sync_state WHERE key LIKE ? ESCAPE '\\'",
                    (f"{escaped}%",),
                )
                removed += cursor.rowcount
        return removed

    def close(self) -> None:
        """Close every connection opened by this store."""
        with self._connections_lock:
            for connection in self._connections:
                connection.close()
            self._connections.clear()
        if hasattr(self._local, "connection"):
            del self._local.connection
