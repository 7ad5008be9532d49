"""Sync between the local store and the remote record mirror."""

from .memory_mirror import InMemoryMirror
from .queue import SyncQueue
from .records import (
    PreconditionFailed,
    RecordNotFound,
    RemoteAuthError,
    RemoteMirrorError,
    RemoteNotProvisioned,
    RemoteRecord,
)
from .remote_client import RemoteMirrorClient
from .sync_engine import SyncEngine, SyncStats

__all__ = [
    "InMemoryMirror",
    "PreconditionFailed",
    "RecordNotFound",
    "RemoteAuthError",
    "RemoteMirrorClient",
    "RemoteMirrorError",
    "RemoteNotProvisioned",
    "RemoteRecord",
    "SyncEngine",
    "SyncQueue",
    "SyncStats",
]
