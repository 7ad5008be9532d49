"""Application wiring - local operations followed by background sync."""

import logging
import uuid
from datetime import date, datetime
from pathlib import Path
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .auth import KeychainManager, StoredCredentials
from .config import Config
from .expenses import ExpenseStore
from .models import Expense, WorkSession
from .projects import ProjectResolver
from .reports import ExportResult, ReportExporter, ZipCsvExporter, month_bounds
from .rounding import RoundingRule
from .sessions import UNSET, WorkSessionStore
from .storage import LocalStore
from .sync import RemoteMirrorClient, SyncEngine, SyncQueue, SyncStats
from .sync.protocols import RemoteMirrorProtocol

__all__ = ["CommesseApp"]

logger = logging.getLogger(__name__)

PULL_JOB_ID = "pull_job"


class CommesseApp:
    """Owns the store, the repositories and the sync machinery.

    Every mutating method applies the change locally first and then
    enqueues a push (or a remote delete) without waiting for it. With no
    remote configured, or with sync disabled, the app is local-only.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        store: Optional[LocalStore] = None,
        remote: Optional[RemoteMirrorProtocol] = None,
        keychain: Optional[KeychainManager] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or Config.load()
        self.store = store or LocalStore(self.config.database_path)
        self.keychain = keychain or KeychainManager()

        self.sessions = WorkSessionStore(self.store, clock=clock)
        self.projects = ProjectResolver(self.store, clock=clock)
        self.expenses = ExpenseStore(self.store, clock=clock)

        self.remote = remote if remote is not None else self._build_remote()
        self.engine: Optional[SyncEngine] = None
        self.queue: Optional[SyncQueue] = None
        if self.remote is not None and self.config.sync.enabled:
            self.engine = SyncEngine(self.remote, self.store, self.config)
            self.queue = SyncQueue(self.engine)

        self.scheduler = BackgroundScheduler()

    def _build_remote(self) -> Optional[RemoteMirrorClient]:
        if not self.config.remote_url:
            return None
        credentials = self.keychain.load(self.config.remote_url)
        if credentials is None:
            logger.warning(f"No credentials for {self.config.remote_url}, sync requests will fail")
        return RemoteMirrorClient(
            api_url=self.config.remote_url,
            token=credentials.api_token if credentials else None,
            device_id=self.config.device_id,
            timeout=self.config.sync.timeout,
        )

    @property
    def sync_enabled(self) -> bool:
        return self.engine is not None

    def _default_rounding(self, rounding) -> RoundingRule:
        return RoundingRule.parse(rounding if rounding is not None else self.config.sessions.default_rounding)

    def _schedule_push(self) -> None:
        if self.queue is not None:
            self.queue.enqueue_push()

    # -- Lifecycle --------------------------------------------------------

    def bootstrap(self) -> Optional[SyncStats]:
        """Launch sequence: drop stale sync state, then pull everything once."""
        if self.engine is None:
            logger.debug("Sync disabled, skipping launch pull")
            return None
        self.engine.prepare_for_first_run()
        stats = self.engine.pull_all()
        logger.info(f"Launch pull finished ({stats.records_fetched} records)")
        return stats

    def start(self) -> None:
        """Schedule periodic pulls when configured."""
        interval = self.config.sync.pull_interval_seconds
        if self.queue is None or interval <= 0:
            return
        self.scheduler.add_job(
            self.queue.enqueue_pull,
            trigger=IntervalTrigger(seconds=interval),
            id=PULL_JOB_ID,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(f"Periodic pull started (interval: {interval}s)")

    def shutdown(self, timeout: Optional[float] = 10.0) -> None:
        """Stop the scheduler, let queued sync jobs finish, close connections."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        if self.queue is not None:
            if not self.queue.flush(timeout):
                logger.warning("Sync jobs still pending at shutdown")
            self.queue.stop()
        close = getattr(self.remote, "close", None)
        if callable(close):
            close()
        self.store.close()
        logger.info("Shutdown complete")

    # -- Sessions ---------------------------------------------------------

    def current_session(self) -> Optional[WorkSession]:
        return self.sessions.current_open_session()

    def start_session(
        self,
        project_name: Optional[str] = None,
        rounding=None,
        at: Optional[datetime] = None,
        note: Optional[str] = None,
    ) -> WorkSession:
        """Open a session; an already open one is returned and nothing changes."""
        existing = self.sessions.current_open_session()
        if existing is not None:
            return existing
        project = self.projects.resolve_or_create(project_name)
        session = self.sessions.start_session(
            at=at, project=project, rounding=self._default_rounding(rounding), note=note
        )
        self._schedule_push()
        return session

    def stop_session(self, break_minutes: int = 0, at: Optional[datetime] = None) -> WorkSession:
        session = self.sessions.stop_current_session(break_minutes=break_minutes, at=at)
        self._schedule_push()
        return session

    def switch_session(
        self,
        project_name: Optional[str] = None,
        rounding=None,
        at: Optional[datetime] = None,
    ) -> WorkSession:
        project = self.projects.resolve_or_create(project_name)
        session = self.sessions.switch_open_session(
            project=project, rounding=self._default_rounding(rounding), at=at
        )
        self._schedule_push()
        return session

    def add_session(
        self,
        start: datetime,
        end: Optional[datetime] = None,
        break_minutes: int = 0,
        project_name: Optional[str] = None,
        note: Optional[str] = None,
        rounding=None,
    ) -> WorkSession:
        """Add a session by hand. Without an end it is opened instead."""
        if end is None:
            return self.start_session(project_name=project_name, rounding=rounding, at=start, note=note)
        project = self.projects.resolve_or_create(project_name)
        session = self.sessions.create_closed_session(
            start,
            end,
            break_minutes=break_minutes,
            project=project,
            note=note,
            rounding=self._default_rounding(rounding),
        )
        self._schedule_push()
        return session

    def edit_session(self, session_id: uuid.UUID, project_name=UNSET, **changes) -> WorkSession:
        """Edit a session; ``project_name`` is resolved like everywhere else."""
        if project_name is not UNSET:
            changes["project"] = self.projects.resolve_or_create(project_name)
        session = self.sessions.edit_session(session_id, **changes)
        self._schedule_push()
        return session

    def delete_session(self, session_id: uuid.UUID) -> bool:
        deleted = self.sessions.delete_session(session_id)
        if deleted and self.queue is not None:
            self.queue.enqueue_delete_sessions([session_id])
        return deleted

    def discard_session(self) -> Optional[WorkSession]:
        session = self.sessions.discard_open_session()
        if session is not None and self.queue is not None:
            self.queue.enqueue_delete_sessions([session.id])
        return session

    def history(
        self, start: datetime, end: datetime, project_name: Optional[str] = None
    ) -> list[WorkSession]:
        project = None
        if project_name:
            project = self.store.find_project_by_name(project_name.strip())
            if project is None:
                return []
        return self.sessions.sessions(start, end, project=project)

    def total_minutes(self, start: datetime, end: datetime) -> int:
        return self.sessions.total_minutes(start, end)

    def project_names(self) -> dict:
        return {p.id: p.name for p in self.projects.all()}

    # -- Expenses ---------------------------------------------------------

    def log_expense(
        self,
        amount,
        category: str,
        spent_on: Optional[date] = None,
        note: Optional[str] = None,
        project_name: Optional[str] = None,
        receipt: Optional[bytes] = None,
    ) -> Expense:
        project = self.projects.resolve_or_create(project_name)
        return self.expenses.log_expense(
            amount, category, spent_on=spent_on, note=note, project=project, receipt=receipt
        )

    # -- Reports ----------------------------------------------------------

    def export_month(
        self,
        year: int,
        month: int,
        output_dir: Path,
        title: Optional[str] = None,
        exporter: Optional[ReportExporter] = None,
    ) -> ExportResult:
        start, end = month_bounds(year, month)
        sessions = sorted(self.sessions.sessions(start, end), key=lambda s: s.start)
        expenses = sorted(self.expenses.expenses(start.date(), end.date()), key=lambda e: e.date)
        exporter = exporter or ZipCsvExporter(output_dir, project_names=self.project_names())
        return exporter.export(title or f"{year:04d}-{month:02d}", sessions, expenses)

    # -- Sync -------------------------------------------------------------

    def sync_now(self) -> Optional[SyncStats]:
        """Push then pull, waiting for both. None when sync is disabled."""
        if self.engine is None:
            return None
        if self.queue is not None:
            self.queue.flush()
        stats = self.engine.push_all()
        stats.merge(self.engine.pull_all())
        return stats

    def login(self, api_url: str, api_token: str) -> bool:
        """Store credentials for a remote and make it the configured one."""
        api_url = api_url.rstrip("/")
        device_id = self.config.device_id or str(uuid.uuid4())
        stored = self.keychain.store(
            StoredCredentials(api_url=api_url, api_token=api_token, device_id=device_id)
        )
        if not stored:
            return False
        self.config.remote_url = api_url
        self.config.device_id = device_id
        self.config.save()
        return True

    def logout(self) -> bool:
        """Forget the remote credentials; local data is kept."""
        if not self.config.remote_url:
            return True
        removed = self.keychain.delete(self.config.remote_url)
        self.config.remote_url = None
        self.config.save()
        return removed
