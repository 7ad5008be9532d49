"""Background queue for fire-and-forget sync jobs."""

import logging
import queue
import threading
import uuid
from typing import Callable, Iterable, Optional

from .sync_engine import SyncEngine, SyncStats

logger = logging.getLogger(__name__)

JOB_PUSH = "push"
JOB_PULL = "pull"
JOB_DELETE_SESSIONS = "delete_sessions"
JOB_DELETE_PROJECTS = "delete_projects"


class SyncQueue:
    """Runs sync jobs one at a time on a single worker thread.

    Callers enqueue and return immediately. A push that is still waiting
    to run absorbs any further push requests. Job failures are logged and
    never reach the caller.
    """

    def __init__(self, engine: SyncEngine):
        self.engine = engine
        self.last_stats: Optional[SyncStats] = None
        self._jobs: "queue.Queue[Optional[tuple[str, Callable[[], SyncStats]]]]" = queue.Queue()
        self._cond = threading.Condition()
        self._pending = 0
        self._push_pending = False
        self._stopped = False
        self._thread = threading.Thread(target=self._run, name="commesse-sync", daemon=True)
        self._thread.start()

    def enqueue_push(self) -> bool:
        return self._submit(JOB_PUSH, self.engine.push_all)

    def enqueue_pull(self) -> bool:
        return self._submit(JOB_PULL, self.engine.pull_all)

    def enqueue_delete_sessions(self, ids: Iterable[uuid.UUID]) -> bool:
        ids = list(ids)
        return self._submit(JOB_DELETE_SESSIONS, lambda: self.engine.delete_sessions(ids))

    def enqueue_delete_projects(self, ids: Iterable[uuid.UUID]) -> bool:
        ids = list(ids)
        return self._submit(JOB_DELETE_PROJECTS, lambda: self.engine.delete_projects(ids))

    def _submit(self, kind: str, job: Callable[[], SyncStats]) -> bool:
        """Queue a job. Returns False when it was dropped or coalesced."""
        with self._cond:
            if self._stopped:
                logger.debug(f"Sync queue stopped, dropping {kind}")
                return False
            if kind == JOB_PUSH:
                if self._push_pending:
                    logger.debug("Push already pending, coalesced")
                    return False
                self._push_pending = True
            self._pending += 1
        self._jobs.put((kind, job))
        return True

    def _run(self) -> None:
        while True:
            item = self._jobs.get()
            if item is None:
                break

            kind, job = item
            if kind == JOB_PUSH:
                # Mutations made while this push runs must schedule another
                with self._cond:
                    self._push_pending = False
            try:
                self.last_stats = job()
            except Exception:
                logger.exception(f"Sync job {kind} failed")
            finally:
                with self._cond:
                    self._pending -= 1
                    if self._pending == 0:
                        self._cond.notify_all()

    @property
    def pending(self) -> int:
        with self._cond:
            return self._pending

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Block until every queued job has run.

        Returns:
            False if the timeout expired first
        """
        with self._cond:
            return self._cond.wait_for(lambda: self._pending == 0, timeout)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Stop accepting jobs and let the worker finish what is queued."""
        with self._cond:
            if self._stopped:
                return
            self._stopped = True
        self._jobs.put(None)
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning("Sync worker did not stop in time")
