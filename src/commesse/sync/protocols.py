"""Protocol types for SyncEngine dependencies.

Defines the interfaces that SyncEngine requires from its collaborators,
enabling easier testing and looser coupling.
"""

import uuid
from typing import Iterable, Optional, Protocol, runtime_checkable

from ..models import Project, WorkSession
from .records import QueryPage, RecordOutcome, RemoteRecord


@runtime_checkable
class RemoteMirrorProtocol(Protocol):
    """Interface for the per-record remote mirror."""

    def get_record(self, key: str) -> RemoteRecord: ...

    def batch_write(
        self,
        records_to_save: list[RemoteRecord],
        keys_to_delete: Optional[list[str]] = None,
        atomic: bool = False,
    ) -> list[RecordOutcome]: ...

    def query_page(
        self,
        record_type: str,
        cursor: Optional[str] = None,
        page_size: int = ...,
    ) -> QueryPage: ...

    def delete_record(self, key: str, if_change_tag: Optional[str] = None) -> None: ...


@runtime_checkable
class LocalStoreProtocol(Protocol):
    """Interface for the local record store, as used by sync."""

    def all_projects(self) -> list[Project]: ...

    def all_sessions(self) -> list[WorkSession]: ...

    def get_project(self, project_id: Optional[uuid.UUID]) -> Optional[Project]: ...

    def insert_project(self, project: Project) -> None: ...

    def update_project(self, project: Project) -> None: ...

    def get_session(self, session_id: uuid.UUID) -> Optional[WorkSession]: ...

    def insert_session(self, session: WorkSession) -> None: ...

    def update_session(self, session: WorkSession) -> None: ...

    def get_state(self, key: str) -> Optional[str]: ...

    def set_state(self, key: str, value: str) -> None: ...

    def delete_state(self, key: str) -> None: ...

    def purge_state(self, prefixes: Iterable[str]) -> int: ...
