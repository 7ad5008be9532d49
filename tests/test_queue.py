"""Tests for the background sync queue."""

import threading
import uuid
from unittest.mock import Mock

from commesse.sync.queue import SyncQueue
from commesse.sync.sync_engine import SyncStats


class TestSyncQueue:
    """Tests for SyncQueue."""

    def setup_method(self):
        self.engine = Mock()
        self.engine.push_all.return_value = SyncStats(records_pushed=1)
        self.engine.pull_all.return_value = SyncStats(records_fetched=2)
        self.engine.delete_sessions.return_value = SyncStats(remote_deleted=1)
        self.engine.delete_projects.return_value = SyncStats()
        self.queue = SyncQueue(self.engine)

    def teardown_method(self):
        self.queue.stop()

    def block_worker(self) -> threading.Event:
        """Occupy the worker with a pull until the returned event is set."""
        release = threading.Event()
        started = threading.Event()

        def slow_pull():
            started.set()
            release.wait(5)
            return SyncStats()

        self.engine.pull_all.side_effect = slow_pull
        self.queue.enqueue_pull()
        assert started.wait(5)
        return release

    def test_enqueue_push_runs_after_flush(self):
        """Test enqueue push runs after flush."""
        assert self.queue.enqueue_push() is True

        assert self.queue.flush(timeout=5) is True
        self.engine.push_all.assert_called_once()
        assert self.queue.last_stats.records_pushed == 1

    def test_flush_with_nothing_queued(self):
        """Test flush with nothing queued."""
        assert self.queue.flush(timeout=1) is True

    def test_pending_pushes_are_coalesced(self):
        """Test pending pushes are coalesced."""
        release = self.block_worker()

        assert self.queue.enqueue_push() is True
        assert self.queue.enqueue_push() is False
        assert self.queue.enqueue_push() is False
        release.set()

        assert self.queue.flush(timeout=5)
        assert self.engine.push_all.call_count == 1

    def test_push_after_running_push_is_queued(self):
        """Test push after running push is queued."""
        started = threading.Event()
        release = threading.Event()

        def slow_push():
            started.set()
            release.wait(5)
            return SyncStats()

        self.engine.push_all.side_effect = slow_push
        self.queue.enqueue_push()
        assert started.wait(5)

        assert self.queue.enqueue_push() is True
        release.set()

        assert self.queue.flush(timeout=5)
        assert self.engine.push_all.call_count == 2

    def test_deletes_carry_ids(self):
        """Test deletes carry ids."""
        ids = [uuid.uuid4(), uuid.uuid4()]

        self.queue.enqueue_delete_sessions(iter(ids))
        self.queue.enqueue_delete_projects([ids[0]])
        self.queue.flush(timeout=5)

        self.engine.delete_sessions.assert_called_once_with(ids)
        self.engine.delete_projects.assert_called_once_with([ids[0]])

    def test_jobs_run_in_order(self):
        """Test jobs run in order."""
        calls = []
        self.engine.pull_all.side_effect = lambda: calls.append("pull") or SyncStats()
        self.engine.push_all.side_effect = lambda: calls.append("push") or SyncStats()

        self.queue.enqueue_pull()
        self.queue.enqueue_push()
        self.queue.flush(timeout=5)

        assert calls == ["pull", "push"]

    def test_job_failure_does_not_stop_worker(self):
        """Test job failure does not stop worker."""
        self.engine.push_all.side_effect = RuntimeError("boom")

        self.queue.enqueue_push()
        self.queue.enqueue_pull()

        assert self.queue.flush(timeout=5)
        self.engine.pull_all.assert_called_once()

    def test_flush_times_out_while_blocked(self):
        """Test flush times out while blocked."""
        release = self.block_worker()

        assert self.queue.flush(timeout=0.05) is False
        release.set()
        assert self.queue.flush(timeout=5) is True

    def test_stop_rejects_new_jobs(self):
        """Test stop rejects new jobs."""
        self.queue.stop()

        assert self.queue.enqueue_push() is False
        self.engine.push_all.assert_not_called()
