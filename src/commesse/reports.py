"""Monthly report export - sessions and expenses packaged as a zip of CSV files."""

import calendar
import csv
import io
import logging
import re
import unicodedata
import zipfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from pathlib import Path
from typing import Callable, Optional, Protocol, runtime_checkable

from .models import Expense, WorkSession
from .rounding import format_minutes

__all__ = [
    "ExportResult",
    "ExportError",
    "TemplateMissing",
    "TemplateCorrupted",
    "WriteFailed",
    "ArchiveFailed",
    "ReportExporter",
    "ZipCsvExporter",
    "month_bounds",
]

logger = logging.getLogger(__name__)

SESSIONS_ENTRY = "sessions.csv"
EXPENSES_ENTRY = "expenses.csv"
NO_PROJECT = "No project"

SESSION_COLUMNS = ["Date", "Start", "End", "Break", "State", "Project", "Payable", "Note"]
EXPENSE_COLUMNS = ["Date", "Amount", "Category", "Project", "Note"]


@dataclass
class ExportResult:
    path: Path
    session_count: int
    expense_count: int


class ExportError(Exception):
    """Report could not be produced."""

    pass


class TemplateMissing(ExportError):
    pass


class TemplateCorrupted(ExportError):
    pass


class WriteFailed(ExportError):
    pass


class ArchiveFailed(ExportError):
    pass


@runtime_checkable
class ReportExporter(Protocol):
    """Turns a month of sessions and expenses into a file."""

    def export(
        self, title: str, sessions: list[WorkSession], expenses: list[Expense]
    ) -> ExportResult: ...


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    """First and last instant (inclusive) of a calendar month in UTC."""
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month: {month}")
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    days = calendar.monthrange(year, month)[1]
    end = start + timedelta(days=days) - timedelta(microseconds=1)
    return start, end


def sanitized_file_name(title: str, fallback: str = "Month") -> str:
    """ASCII file-name stem: letters, digits, dash and underscore."""
    folded = unicodedata.normalize("NFKD", title.strip()).encode("ascii", "ignore").decode()
    stem = re.sub(r"[^A-Za-z0-9_-]", "-", folded)
    stem = re.sub(r"-{2,}", "-", stem).strip("-_")
    return stem or fallback


class ZipCsvExporter:
    """Writes ``sessions.csv`` and ``expenses.csv`` into a zip archive.

    An optional template archive supplies extra entries (a cover sheet,
    a readme) that are copied into every report unchanged.
    """

    def __init__(
        self,
        output_dir: Path,
        project_names: Optional[dict] = None,
        template: Optional[Path] = None,
        tz: tzinfo = timezone.utc,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.output_dir = Path(output_dir)
        self.project_names = project_names or {}
        self.template = template
        self.tz = tz
        self._clock = clock or (lambda: datetime.now(self.tz))

    def export(
        self, title: str, sessions: list[WorkSession], expenses: list[Expense]
    ) -> ExportResult:
        template_entries = self._read_template()

        try:
            sessions_csv = self._sessions_csv(sessions)
            expenses_csv = self._expenses_csv(expenses)
        except (csv.Error, ValueError) as e:
            raise WriteFailed(f"Could not write the report: {e}") from e

        file_name = f"{sanitized_file_name(title)}-{self._clock().strftime('%Y%m%d-%H%M%S')}.zip"
        path = self.output_dir / file_name
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(path, "w", zipfile.ZIP_DEFLATED) as zf:
                for name, data in template_entries.items():
                    zf.writestr(name, data)
                zf.writestr(SESSIONS_ENTRY, sessions_csv)
                zf.writestr(EXPENSES_ENTRY, expenses_csv)
        except (OSError, zipfile.BadZipFile) as e:
            if path.exists():
                path.unlink()
            raise ArchiveFailed(f"Could not create the report archive: {e}") from e

        logger.info(
            f"Exported {len(sessions)} sessions and {len(expenses)} expenses to {path}"
        )
        return ExportResult(path=path, session_count=len(sessions), expense_count=len(expenses))

    def _read_template(self) -> dict[str, bytes]:
        if self.template is None:
            return {}
        if not self.template.is_file():
            raise TemplateMissing(f"Report template not found: {self.template}")
        try:
            with zipfile.ZipFile(self.template) as zf:
                return {
                    info.filename: zf.read(info)
                    for info in zf.infolist()
                    if not info.is_dir()
                    and info.filename not in (SESSIONS_ENTRY, EXPENSES_ENTRY)
                }
        except (zipfile.BadZipFile, OSError) as e:
            raise TemplateCorrupted(f"Report template is damaged: {e}") from e

    def _project_name(self, project_id) -> str:
        if project_id is None:
            return NO_PROJECT
        return self.project_names.get(project_id, NO_PROJECT)

    def _sessions_csv(self, sessions: list[WorkSession]) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(SESSION_COLUMNS)
        for session in sessions:
            start = session.start.astimezone(self.tz)
            end = session.end.astimezone(self.tz).strftime("%H:%M") if session.end else ""
            writer.writerow(
                [
                    start.strftime("%Y-%m-%d"),
                    start.strftime("%H:%M"),
                    end,
                    format_minutes(session.break_minutes),
                    session.state.value,
                    self._project_name(session.project_id),
                    format_minutes(session.payable_minutes) if session.end else "",
                    session.note or "",
                ]
            )
        return buffer.getvalue()

    def _expenses_csv(self, expenses: list[Expense]) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(EXPENSE_COLUMNS)
        for expense in expenses:
            writer.writerow(
                [
                    expense.date.isoformat(),
                    f"{expense.amount:.2f}",
                    expense.category,
                    self._project_name(expense.project_id),
                    expense.note or "",
                ]
            )
        return buffer.getvalue()
