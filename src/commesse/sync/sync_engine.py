"""Sync engine - mirrors local projects and sessions to the remote store."""

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from ..config import Config
from ..storage import StorageError
from .protocols import LocalStoreProtocol, RemoteMirrorProtocol
from .records import (
    RECORD_TYPE_PROJECT,
    RECORD_TYPE_WORK_SESSION,
    PreconditionFailed,
    RecordNotFound,
    RemoteMirrorError,
    RemoteNotProvisioned,
    RemoteRecord,
    project_from_record,
    project_to_record,
    record_key,
    session_from_record,
    session_to_record,
)

__all__ = ["SyncEngine", "SyncStats", "CHANGE_TAG_PREFIX", "LEGACY_STATE_PREFIXES"]

logger = logging.getLogger(__name__)

# sync_state key prefix for the last change tag seen for a remote key
CHANGE_TAG_PREFIX = "change_tag:"

# Cursor/token state written by earlier versions; never valid across launches
LEGACY_STATE_PREFIXES = ("CKServerChangeToken_", "CloudKitToken_", "pull_cursor:")


@dataclass
class SyncStats:
    """Statistics from a push or pull."""

    records_pushed: int = 0
    records_rejected: int = 0
    records_fetched: int = 0
    records_inserted: int = 0
    records_updated: int = 0
    records_stale: int = 0
    records_malformed: int = 0
    remote_deleted: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0

    def merge(self, other: "SyncStats") -> "SyncStats":
        for name in self.__dataclass_fields__:
            if name == "errors":
                self.errors.extend(other.errors)
            else:
                setattr(self, name, getattr(self, name) + getattr(other, name))
        return self


class SyncEngine:
    """Bidirectional last-write-wins sync between the local store and the mirror.

    Push overwrites the remote copy with the local one (full record, not a
    field merge). Pull applies a remote record locally only when its
    ``updatedAt`` is at least the local one. Deletes are best effort and
    never reconciled: a record deleted here whose remote delete failed
    comes back on the next pull.
    """

    def __init__(
        self,
        remote: RemoteMirrorProtocol,
        store: LocalStoreProtocol,
        config: Optional[Config] = None,
    ):
        self.remote = remote
        self.store = store
        self.config = config or Config()

    # -- Bootstrapping ----------------------------------------------------

    def prepare_for_first_run(self) -> int:
        """Drop cursor/token state left by earlier versions."""
        removed = self.store.purge_state(LEGACY_STATE_PREFIXES)
        if removed:
            logger.info(f"Purged {removed} legacy sync state entries")
        return removed

    # -- Push -------------------------------------------------------------

    def push_all(self) -> SyncStats:
        """Push every local project and session, both types concurrently."""
        stats = SyncStats()
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="commesse-push") as pool:
            futures = [pool.submit(self.push_projects), pool.submit(self.push_sessions)]
            for future in futures:
                stats.merge(future.result())
        return stats

    def push_projects(self) -> SyncStats:
        return self._push(RECORD_TYPE_PROJECT, self.store.all_projects, project_to_record)

    def push_sessions(self) -> SyncStats:
        return self._push(RECORD_TYPE_WORK_SESSION, self.store.all_sessions, session_to_record)

    def _push(
        self,
        record_type: str,
        fetch: Callable[[], list],
        to_record: Callable[[object], RemoteRecord],
    ) -> SyncStats:
        stats = SyncStats()
        try:
            records = [to_record(item) for item in fetch()]
            if not records:
                return stats

            prepared = [self._prepare_for_save(record) for record in records]
            outcomes = self.remote.batch_write(prepared, [], atomic=False)
        except (RemoteMirrorError, StorageError) as e:
            logger.warning(f"Push {record_type} failed: {e}")
            stats.errors.append(f"Push {record_type} failed: {e}")
            return stats

        for outcome in outcomes:
            if outcome.success:
                stats.records_pushed += 1
                if outcome.record is not None and outcome.record.change_tag:
                    self._remember_change_tag(outcome.key, outcome.record.change_tag)
            else:
                stats.records_rejected += 1
                logger.warning(f"Remote rejected {outcome.key}: {outcome.error}")

        logger.info(
            f"Pushed {stats.records_pushed}/{len(prepared)} {record_type} records"
            + (f", {stats.records_rejected} rejected" if stats.records_rejected else "")
        )
        return stats

    def _prepare_for_save(self, local: RemoteRecord) -> RemoteRecord:
        """Overlay the local record onto the remote copy, keeping its change tag.

        Fields the remote has but the local record lacks are sent as None so
        the remote clears them.
        """
        try:
            existing = self.remote.get_record(local.key)
        except RecordNotFound:
            return local

        keys = set(existing.fields) | set(local.fields)
        return RemoteRecord(
            record_type=local.record_type,
            key=local.key,
            fields={key: local.fields.get(key) for key in keys},
            change_tag=existing.change_tag,
            modified_at=existing.modified_at,
        )

    def _remember_change_tag(self, key: str, change_tag: str) -> None:
        try:
            self.store.set_state(f"{CHANGE_TAG_PREFIX}{key}", change_tag)
        except StorageError as e:
            logger.debug(f"Could not record change tag for {key}: {e}")

    # -- Pull -------------------------------------------------------------

    def pull_all(self) -> SyncStats:
        """Pull every remote project and session, both types concurrently."""
        stats = SyncStats()
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="commesse-pull") as pool:
            futures = [pool.submit(self.pull_projects), pool.submit(self.pull_sessions)]
            for future in futures:
                stats.merge(future.result())
        return stats

    def pull_projects(self) -> SyncStats:
        return self._pull(RECORD_TYPE_PROJECT, self._upsert_project)

    def pull_sessions(self) -> SyncStats:
        return self._pull(RECORD_TYPE_WORK_SESSION, self._upsert_session)

    def _pull(
        self, record_type: str, upsert: Callable[[RemoteRecord, SyncStats], None]
    ) -> SyncStats:
        """Page through one record type, upserting each record as it arrives."""
        stats = SyncStats()
        cursor: Optional[str] = None
        try:
            while True:
                page = self.remote.query_page(
                    record_type, cursor=cursor, page_size=self.config.page_size
                )
                for record in page.records:
                    stats.records_fetched += 1
                    upsert(record, stats)
                cursor = page.next_cursor
                if not cursor:
                    break
        except RemoteNotProvisioned as e:
            # First run: nothing of this type has been pushed yet
            logger.debug(f"Pull {record_type} skipped: {e}")
        except (RemoteMirrorError, StorageError) as e:
            logger.warning(f"Pull {record_type} failed: {e}")
            stats.errors.append(f"Pull {record_type} failed: {e}")

        if stats.records_fetched:
            logger.info(
                f"Pulled {stats.records_fetched} {record_type} records: "
                f"{stats.records_inserted} new, {stats.records_updated} updated, "
                f"{stats.records_stale} stale, {stats.records_malformed} malformed"
            )
        return stats

    def _upsert_project(self, record: RemoteRecord, stats: SyncStats) -> None:
        incoming = project_from_record(record)
        if incoming is None:
            stats.records_malformed += 1
            return

        existing = self.store.get_project(incoming.id)
        if existing is None:
            self.store.insert_project(incoming)
            stats.records_inserted += 1
            return

        if incoming.updated_at < existing.updated_at:
            stats.records_stale += 1
            return

        incoming.created_at = existing.created_at
        self.store.update_project(incoming)
        stats.records_updated += 1

    def _upsert_session(self, record: RemoteRecord, stats: SyncStats) -> None:
        incoming = session_from_record(record)
        if incoming is None:
            stats.records_malformed += 1
            return

        # Keep the id even if the project has not arrived yet; readers resolve it
        if incoming.project_id is not None and self.store.get_project(incoming.project_id) is None:
            logger.debug(f"Session {incoming.id} references unknown project {incoming.project_id}")

        existing = self.store.get_session(incoming.id)
        if existing is None:
            self.store.insert_session(incoming)
            stats.records_inserted += 1
            return

        if incoming.updated_at < existing.updated_at:
            stats.records_stale += 1
            return

        incoming.created_at = existing.created_at
        incoming.override_hourly_rate = existing.override_hourly_rate
        self.store.update_session(incoming)
        stats.records_updated += 1

    # -- Delete -----------------------------------------------------------

    def delete_sessions(self, ids: Iterable[uuid.UUID]) -> SyncStats:
        return self._delete(RECORD_TYPE_WORK_SESSION, ids)

    def delete_projects(self, ids: Iterable[uuid.UUID]) -> SyncStats:
        """Delete remote projects. Only for projects that are truly gone."""
        return self._delete(RECORD_TYPE_PROJECT, ids)

    def _delete(self, record_type: str, ids: Iterable[uuid.UUID]) -> SyncStats:
        """Best-effort remote delete guarded by the last known change tag."""
        stats = SyncStats()
        for local_id in ids:
            key = record_key(record_type, local_id)
            state_key = f"{CHANGE_TAG_PREFIX}{key}"
            try:
                change_tag = self.store.get_state(state_key)
                self.remote.delete_record(key, if_change_tag=change_tag)
                stats.remote_deleted += 1
                logger.info(f"Deleted remote {key}")
            except (RecordNotFound, PreconditionFailed) as e:
                logger.debug(f"Remote delete of {key} skipped: {type(e).__name__}")
            except (RemoteMirrorError, StorageError) as e:
                logger.warning(f"Remote delete of {key} failed: {e}")
                stats.errors.append(f"Delete {key} failed: {e}")
                continue
            try:
                self.store.delete_state(state_key)
            except StorageError as e:
                logger.debug(f"Could not clear change tag for {key}: {e}")
        return stats
