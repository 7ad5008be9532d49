"""In-process remote mirror.

Implements RemoteMirrorProtocol entirely in memory: change tags, paged
queries ordered by modification time, and optimistic delete. Used as the
second device in tests and when embedding the engine without a server.
"""

import logging
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

from .records import (
    PreconditionFailed,
    QueryPage,
    RecordNotFound,
    RecordOutcome,
    RemoteNotProvisioned,
    RemoteRecord,
)

__all__ = ["InMemoryMirror"]

logger = logging.getLogger(__name__)


class InMemoryMirror:
    """Thread-safe dictionary-backed mirror.

    A record type becomes queryable once a record of that type has been
    saved; querying an unknown type raises RemoteNotProvisioned, like a
    fresh cloud container.
    """

    def __init__(self):
        self._records: dict[str, RemoteRecord] = {}
        self._sequence: dict[str, int] = {}
        self._known_types: set[str] = set()
        self._counter = 0
        self._lock = threading.Lock()

    def _next_tag(self) -> str:
        return uuid.uuid4().hex

    def get_record(self, key: str) -> RemoteRecord:
        with self._lock:
            record = self._records.get(key)
            if record is None:
                raise RecordNotFound(key)
            return replace(record, fields=dict(record.fields))

    def batch_write(
        self,
        records_to_save: list[RemoteRecord],
        keys_to_delete: Optional[list[str]] = None,
        atomic: bool = False,
    ) -> list[RecordOutcome]:
        """Apply saves and deletes record by record.

        A save whose change tag does not match the stored record is rejected
        without affecting the others. ``atomic`` is not supported and is
        treated as False.
        """
        outcomes = []
        with self._lock:
            for record in records_to_save:
                outcomes.append(self._save_locked(record))
            for key in keys_to_delete or []:
                if self._records.pop(key, None) is None:
                    outcomes.append(RecordOutcome(key=key, success=False, error="not_found"))
                else:
                    self._sequence.pop(key, None)
                    outcomes.append(RecordOutcome(key=key, success=True))
        return outcomes

    def _save_locked(self, record: RemoteRecord) -> RecordOutcome:
        existing = self._records.get(record.key)
        current_tag = existing.change_tag if existing else None
        if record.change_tag != current_tag:
            return RecordOutcome(key=record.key, success=False, error="conflict")

        fields = {k: v for k, v in record.fields.items() if v is not None}
        self._counter += 1
        saved = RemoteRecord(
            record_type=record.record_type,
            key=record.key,
            fields=fields,
            change_tag=self._next_tag(),
            modified_at=datetime.now(timezone.utc),
        )
        self._records[record.key] = saved
        self._sequence[record.key] = self._counter
        self._known_types.add(record.record_type)
        return RecordOutcome(
            key=record.key, success=True, record=replace(saved, fields=dict(fields))
        )

    def query_page(
        self,
        record_type: str,
        cursor: Optional[str] = None,
        page_size: int = 200,
    ) -> QueryPage:
        with self._lock:
            if record_type not in self._known_types:
                raise RemoteNotProvisioned(f"Unknown record type: {record_type}")
            matching = sorted(
                (r for r in self._records.values() if r.record_type == record_type),
                key=lambda r: self._sequence[r.key],
            )
            offset = int(cursor) if cursor else 0
            page = matching[offset : offset + page_size]
            next_offset = offset + len(page)
            return QueryPage(
                records=[replace(r, fields=dict(r.fields)) for r in page],
                next_cursor=str(next_offset) if next_offset < len(matching) else None,
            )

    def delete_record(self, key: str, if_change_tag: Optional[str] = None) -> None:
        with self._lock:
            existing = self._records.get(key)
            if existing is None:
                raise RecordNotFound(key)
            if if_change_tag is not None and existing.change_tag != if_change_tag:
                raise PreconditionFailed(key)
            del self._records[key]
            self._sequence.pop(key, None)

    # Test helpers

    def put(self, record: RemoteRecord) -> RemoteRecord:
        """Store a record as if another device had saved it."""
        with self._lock:
            existing = self._records.get(record.key)
            outcome = self._save_locked(
                replace(record, change_tag=existing.change_tag if existing else None)
            )
            return outcome.record

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
