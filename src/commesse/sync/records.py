"""Remote record shapes and mapping to/from local projects and sessions."""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from ..models import Project, WorkSession
from ..rounding import RoundingRule, ensure_utc

__all__ = [
    "RECORD_TYPE_PROJECT",
    "RECORD_TYPE_WORK_SESSION",
    "RemoteRecord",
    "RecordOutcome",
    "QueryPage",
    "RemoteMirrorError",
    "RemoteAuthError",
    "RemoteNotProvisioned",
    "RecordNotFound",
    "PreconditionFailed",
    "record_key",
    "project_to_record",
    "session_to_record",
    "project_from_record",
    "session_from_record",
]

logger = logging.getLogger(__name__)

RECORD_TYPE_PROJECT = "Project"
RECORD_TYPE_WORK_SESSION = "WorkSession"


class ProjectKey:
    ID = "id"
    NAME = "name"
    CODE = "code"
    COLOR_HEX = "colorHex"
    GEOFENCE_LAT = "geofenceLat"
    GEOFENCE_LON = "geofenceLon"
    GEOFENCE_RADIUS = "geofenceRadius"
    HOURLY_RATE = "hourlyRate"
    CREATED_AT = "createdAt"
    UPDATED_AT = "updatedAt"


class WorkSessionKey:
    ID = "id"
    START = "start"
    END = "end"
    BREAK_MINUTES = "breakMinutes"
    NOTE = "note"
    PROJECT_ID = "projectID"
    ROUNDING = "rounding"
    STATE = "state"
    CREATED_AT = "createdAt"
    UPDATED_AT = "updatedAt"


class RemoteMirrorError(Exception):
    """Remote mirror error."""

    pass


class RemoteAuthError(RemoteMirrorError):
    """Authentication error."""

    pass


class RemoteNotProvisioned(RemoteMirrorError):
    """Record type or query index does not exist remotely yet.

    Expected on first run before anything has been pushed.
    """

    pass


class RecordNotFound(RemoteMirrorError):
    """No remote record under the requested key."""

    pass


class PreconditionFailed(RemoteMirrorError):
    """Remote record changed since the expected change tag."""

    pass


@dataclass
class RemoteRecord:
    """A record as held by the remote mirror.

    ``change_tag`` is the remote's concurrency token; None for a record
    that has never been saved remotely. A ``None`` field value asks the
    remote to clear that field.
    """

    record_type: str
    key: str
    fields: dict[str, Any] = field(default_factory=dict)
    change_tag: Optional[str] = None
    modified_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "recordType": self.record_type,
            "key": self.key,
            "fields": dict(self.fields),
            "changeTag": self.change_tag,
            "modifiedAt": self.modified_at.isoformat() if self.modified_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RemoteRecord":
        modified_at = data.get("modifiedAt")
        return cls(
            record_type=data["recordType"],
            key=data["key"],
            fields=dict(data.get("fields") or {}),
            change_tag=data.get("changeTag"),
            modified_at=_decode_datetime(modified_at) if modified_at else None,
        )


@dataclass
class RecordOutcome:
    """Result of saving or deleting one record in a batch write."""

    key: str
    success: bool
    record: Optional[RemoteRecord] = None
    error: Optional[str] = None


@dataclass
class QueryPage:
    """One page of a remote query."""

    records: list[RemoteRecord]
    next_cursor: Optional[str] = None


def record_key(record_type: str, local_id: uuid.UUID) -> str:
    """Stable remote key for a local record: ``{type}_{id}``."""
    return f"{record_type}_{local_id}"


# -- Encoding -----------------------------------------------------------------


def _encode_datetime(value: datetime) -> str:
    return ensure_utc(value).isoformat()


def _put(fields: dict, key: str, value: Any) -> None:
    """Set optional fields only; absent keys are cleared on merge."""
    if value is not None:
        fields[key] = value


def project_to_record(project: Project) -> RemoteRecord:
    fields: dict[str, Any] = {
        ProjectKey.ID: str(project.id),
        ProjectKey.NAME: project.name,
        ProjectKey.CREATED_AT: _encode_datetime(project.created_at),
        ProjectKey.UPDATED_AT: _encode_datetime(project.updated_at),
    }
    _put(fields, ProjectKey.CODE, project.code)
    _put(fields, ProjectKey.COLOR_HEX, project.color_hex)
    _put(fields, ProjectKey.GEOFENCE_LAT, project.geofence_lat)
    _put(fields, ProjectKey.GEOFENCE_LON, project.geofence_lon)
    _put(fields, ProjectKey.GEOFENCE_RADIUS, project.geofence_radius)
    if project.hourly_rate is not None:
        fields[ProjectKey.HOURLY_RATE] = float(project.hourly_rate)
    return RemoteRecord(
        record_type=RECORD_TYPE_PROJECT,
        key=record_key(RECORD_TYPE_PROJECT, project.id),
        fields=fields,
    )


def session_to_record(session: WorkSession) -> RemoteRecord:
    fields: dict[str, Any] = {
        WorkSessionKey.ID: str(session.id),
        WorkSessionKey.START: _encode_datetime(session.start),
        WorkSessionKey.BREAK_MINUTES: session.break_minutes,
        WorkSessionKey.ROUNDING: session.rounding.value,
        WorkSessionKey.STATE: session.state.value,
        WorkSessionKey.CREATED_AT: _encode_datetime(session.created_at),
        WorkSessionKey.UPDATED_AT: _encode_datetime(session.updated_at),
    }
    if session.end is not None:
        fields[WorkSessionKey.END] = _encode_datetime(session.end)
    _put(fields, WorkSessionKey.NOTE, session.note)
    if session.project_id is not None:
        fields[WorkSessionKey.PROJECT_ID] = str(session.project_id)
    return RemoteRecord(
        record_type=RECORD_TYPE_WORK_SESSION,
        key=record_key(RECORD_TYPE_WORK_SESSION, session.id),
        fields=fields,
    )


# -- Decoding -----------------------------------------------------------------


def _decode_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        try:
            return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def _decode_uuid(value: Any) -> Optional[uuid.UUID]:
    if not isinstance(value, str):
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


def _decode_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _decode_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _decode_decimal(value: Any) -> Optional[Decimal]:
    number = _decode_float(value)
    if number is None:
        return None
    try:
        return Decimal(str(number))
    except InvalidOperation:
        return None


def project_from_record(record: RemoteRecord) -> Optional[Project]:
    """Decode a remote project; None when id, name or updatedAt is missing."""
    f = record.fields
    project_id = _decode_uuid(f.get(ProjectKey.ID))
    name = _decode_str(f.get(ProjectKey.NAME))
    updated_at = _decode_datetime(f.get(ProjectKey.UPDATED_AT))
    if project_id is None or name is None or updated_at is None:
        logger.debug(f"Skipping malformed project record {record.key}")
        return None

    return Project(
        id=project_id,
        name=name,
        code=_decode_str(f.get(ProjectKey.CODE)),
        color_hex=_decode_str(f.get(ProjectKey.COLOR_HEX)),
        geofence_lat=_decode_float(f.get(ProjectKey.GEOFENCE_LAT)),
        geofence_lon=_decode_float(f.get(ProjectKey.GEOFENCE_LON)),
        geofence_radius=_decode_float(f.get(ProjectKey.GEOFENCE_RADIUS)),
        hourly_rate=_decode_decimal(f.get(ProjectKey.HOURLY_RATE)),
        created_at=_decode_datetime(f.get(ProjectKey.CREATED_AT)) or updated_at,
        updated_at=updated_at,
    )


def session_from_record(record: RemoteRecord) -> Optional[WorkSession]:
    """Decode a remote session; None when id, start or updatedAt is missing.

    ``project_id`` is copied from ``projectID`` as-is; the caller decides
    whether it points at a known project. ``state`` is ignored in favour
    of ``end``.
    """
    f = record.fields
    session_id = _decode_uuid(f.get(WorkSessionKey.ID))
    start = _decode_datetime(f.get(WorkSessionKey.START))
    updated_at = _decode_datetime(f.get(WorkSessionKey.UPDATED_AT))
    if session_id is None or start is None or updated_at is None:
        logger.debug(f"Skipping malformed session record {record.key}")
        return None

    break_minutes = f.get(WorkSessionKey.BREAK_MINUTES)
    if isinstance(break_minutes, bool) or not isinstance(break_minutes, int):
        break_minutes = 0

    try:
        rounding = RoundingRule.parse(f.get(WorkSessionKey.ROUNDING, RoundingRule.OFF.value))
    except ValueError:
        rounding = RoundingRule.OFF

    return WorkSession(
        id=session_id,
        start=start,
        end=_decode_datetime(f.get(WorkSessionKey.END)),
        break_minutes=max(0, break_minutes),
        note=_decode_str(f.get(WorkSessionKey.NOTE)),
        project_id=_decode_uuid(f.get(WorkSessionKey.PROJECT_ID)),
        rounding=rounding,
        created_at=_decode_datetime(f.get(WorkSessionKey.CREATED_AT)) or updated_at,
        updated_at=updated_at,
    )
