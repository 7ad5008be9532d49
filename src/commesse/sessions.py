"""Work session repository - open/close lifecycle and overlap protection."""

import logging
import uuid
from datetime import datetime
from typing import Callable, Optional

from .models import Project, WorkSession, utcnow
from .rounding import RoundingRule, ensure_utc
from .storage import LocalStore

__all__ = [
    "WorkSessionStore",
    "WorkSessionError",
    "OverlapDetected",
    "NoOpenSession",
    "InvalidInterval",
    "OpenSessionExists",
    "SessionNotFound",
    "UNSET",
]

logger = logging.getLogger(__name__)

# Marks an edit_session field the caller did not supply
UNSET = object()


class WorkSessionError(Exception):
    """Business-rule violation; recoverable by the user."""

    message = "The session could not be saved."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)


class OverlapDetected(WorkSessionError):
    message = "The selected interval overlaps another session."


class NoOpenSession(WorkSessionError):
    message = "There is no open session to close."


class InvalidInterval(WorkSessionError):
    message = "The end time cannot be earlier than the start time."


class OpenSessionExists(WorkSessionError):
    message = "Another session is already open."


class SessionNotFound(WorkSessionError):
    message = "The session no longer exists."


def _project_id(project: Optional[Project]) -> Optional[uuid.UUID]:
    return project.id if project is not None else None


class WorkSessionStore:
    """Manages work sessions in the local store.

    Guarantees at most one open session and no overlap between closed
    sessions. The running open session is never part of the overlap
    check, so a closed session may be backfilled across it.

    Callers are expected to serialize mutations; there is no locking here.
    """

    def __init__(self, store: LocalStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self._clock = clock or utcnow

    def _now(self) -> datetime:
        return ensure_utc(self._clock())

    # -- Queries ----------------------------------------------------------

    def current_open_session(self) -> Optional[WorkSession]:
        """Return the open session, if any."""
        open_sessions = self.store.find_sessions(open_only=True)
        if len(open_sessions) > 1:
            # Can only happen through a racing pull from another device
            logger.warning(f"Found {len(open_sessions)} open sessions, using the newest")
        return open_sessions[0] if open_sessions else None

    def get_session(self, session_id: uuid.UUID) -> Optional[WorkSession]:
        return self.store.get_session(session_id)

    def sessions(
        self,
        start: datetime,
        end: datetime,
        project: Optional[Project] = None,
    ) -> list[WorkSession]:
        """Sessions starting within [start, end], newest first."""
        return self.store.find_sessions(
            start_from=start, start_to=end, project_id=_project_id(project)
        )

    def total_minutes(self, start: datetime, end: datetime) -> int:
        """Payable minutes of closed sessions starting within [start, end]."""
        return sum(s.payable_minutes for s in self.sessions(start, end) if s.end is not None)

    # -- Mutations --------------------------------------------------------

    def start_session(
        self,
        at: Optional[datetime] = None,
        project: Optional[Project] = None,
        rounding: RoundingRule = RoundingRule.OFF,
        note: Optional[str] = None,
    ) -> WorkSession:
        """Open a new session, or return the one already open unchanged."""
        existing = self.current_open_session()
        if existing is not None:
            return existing

        now = self._now()
        session = WorkSession(
            start=at or now,
            project_id=_project_id(project),
            rounding=RoundingRule.parse(rounding),
            note=note or None,
            created_at=now,
            updated_at=now,
        )
        self.store.insert_session(session)
        logger.info(f"Started session {session.id} at {session.start.isoformat()}")
        return session

    def create_closed_session(
        self,
        start: datetime,
        end: datetime,
        break_minutes: int = 0,
        project: Optional[Project] = None,
        note: Optional[str] = None,
        rounding: RoundingRule = RoundingRule.OFF,
    ) -> WorkSession:
        """Record a finished session, e.g. a backfilled entry.

        Raises:
            InvalidInterval: If end precedes start
            OverlapDetected: If the interval overlaps a closed session
        """
        start, end = ensure_utc(start), ensure_utc(end)
        if end < start:
            raise InvalidInterval()
        self._ensure_no_overlap(start, end, excluding=None)

        now = self._now()
        session = WorkSession(
            start=start,
            end=end,
            break_minutes=max(0, break_minutes),
            project_id=_project_id(project),
            note=note or None,
            rounding=RoundingRule.parse(rounding),
            created_at=now,
            updated_at=now,
        )
        self.store.insert_session(session)
        logger.info(f"Created closed session {session.id}")
        return session

    def stop_session(
        self,
        session: WorkSession,
        break_minutes: int = 0,
        at: Optional[datetime] = None,
    ) -> WorkSession:
        """Close an open session. Closing a closed session is a no-op.

        Raises:
            NoOpenSession: If the session no longer exists
            InvalidInterval: If the end precedes the session start
            OverlapDetected: If closing would overlap a closed session
        """
        stored = self.store.get_session(session.id)
        if stored is None:
            raise NoOpenSession()
        if stored.end is not None:
            return stored

        now = self._now()
        end = ensure_utc(at) if at is not None else now
        if end < stored.start:
            raise InvalidInterval()
        self._ensure_no_overlap(stored.start, end, excluding=stored.id)

        stored.end = end
        stored.break_minutes = max(0, break_minutes)
        stored.updated_at = now
        self.store.update_session(stored)
        logger.info(f"Stopped session {stored.id} ({stored.payable_minutes} payable min)")
        return stored

    def stop_current_session(
        self, break_minutes: int = 0, at: Optional[datetime] = None
    ) -> WorkSession:
        """Close whatever session is open.

        Raises:
            NoOpenSession: If nothing is open
        """
        current = self.current_open_session()
        if current is None:
            raise NoOpenSession()
        return self.stop_session(current, break_minutes=break_minutes, at=at)

    def switch_open_session(
        self,
        project: Optional[Project] = None,
        rounding: RoundingRule = RoundingRule.OFF,
        at: Optional[datetime] = None,
    ) -> WorkSession:
        """Close the open session (if any) and open a new one at the same instant.

        If the stop fails nothing changes. If the stop succeeds and the start
        then fails on storage, the old session stays closed and nothing is open.
        """
        at = ensure_utc(at) if at is not None else self._now()
        current = self.current_open_session()
        if current is not None:
            self.stop_session(current, at=at)
        return self.start_session(at=at, project=project, rounding=rounding)

    def discard_open_session(self) -> Optional[WorkSession]:
        """Delete the open session, returning it; None if nothing was open."""
        current = self.current_open_session()
        if current is None:
            return None
        self.store.delete_session(current.id)
        logger.info(f"Discarded open session {current.id}")
        return current

    def edit_session(
        self,
        session_id: uuid.UUID,
        *,
        start=UNSET,
        end=UNSET,
        break_minutes=UNSET,
        note=UNSET,
        project=UNSET,
        rounding=UNSET,
    ) -> WorkSession:
        """Update a session in place.

        Passing ``end=None`` reopens a closed session; passing an end closes
        an open one. Fields left out keep their value.

        Raises:
            SessionNotFound: If the session does not exist
            InvalidInterval: If the resulting end precedes the start
            OverlapDetected: If the resulting closed interval overlaps
            OpenSessionExists: If reopening while another session is open
        """
        session = self.store.get_session(session_id)
        if session is None:
            raise SessionNotFound()

        if start is not UNSET:
            session.start = ensure_utc(start)
        if end is not UNSET:
            session.end = ensure_utc(end) if end is not None else None
        if break_minutes is not UNSET:
            session.break_minutes = max(0, break_minutes)
        if note is not UNSET:
            session.note = note or None
        if project is not UNSET:
            session.project_id = _project_id(project)
        if rounding is not UNSET:
            session.rounding = RoundingRule.parse(rounding)

        if session.end is not None:
            if session.end < session.start:
                raise InvalidInterval()
            self._ensure_no_overlap(session.start, session.end, excluding=session.id)
        else:
            current = self.current_open_session()
            if current is not None and current.id != session.id:
                raise OpenSessionExists()

        session.updated_at = self._now()
        self.store.update_session(session)
        logger.info(f"Edited session {session.id} ({session.state.value})")
        return session

    def delete_session(self, session_id: uuid.UUID) -> bool:
        """Delete a session; the linked project is left alone."""
        deleted = self.store.delete_session(session_id)
        if deleted:
            logger.info(f"Deleted session {session_id}")
        return deleted

    # -- Overlap protection -----------------------------------------------

    def _ensure_no_overlap(
        self, start: datetime, end: datetime, excluding: Optional[uuid.UUID]
    ) -> None:
        """Reject [start, end) if it intersects any closed session."""
        candidates = self.store.find_sessions(
            closed_only=True, start_before=end, exclude_id=excluding
        )
        for other in candidates:
            if other.end is not None and start < other.end and end > other.start:
                logger.debug(f"Interval overlaps session {other.id}")
                raise OverlapDetected()
