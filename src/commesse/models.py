"""Data model for projects, work sessions and expenses."""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from .rounding import RoundingRule, ensure_utc, payable_minutes

__all__ = [
    "Project",
    "WorkSession",
    "Expense",
    "SessionState",
    "RoundingRule",
    "utcnow",
]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


@dataclass
class Project:
    """A client project ("commessa").

    Only ``name`` and the timestamps matter to session logic; the other
    attributes are carried through storage and sync untouched.
    """

    name: str
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    code: Optional[str] = None
    color_hex: Optional[str] = None
    geofence_lat: Optional[float] = None
    geofence_lon: Optional[float] = None
    geofence_radius: Optional[float] = None
    hourly_rate: Optional[Decimal] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class WorkSession:
    """A block of work time, open while ``end`` is None.

    ``state`` is derived from ``end`` and never stored separately.
    """

    start: datetime
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    end: Optional[datetime] = None
    break_minutes: int = 0
    note: Optional[str] = None
    project_id: Optional[uuid.UUID] = None
    rounding: RoundingRule = RoundingRule.OFF
    override_hourly_rate: Optional[Decimal] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.start = ensure_utc(self.start)
        if self.end is not None:
            self.end = ensure_utc(self.end)
        self.rounding = RoundingRule.parse(self.rounding)

    @property
    def state(self) -> SessionState:
        return SessionState.OPEN if self.end is None else SessionState.CLOSED

    @property
    def is_open(self) -> bool:
        return self.end is None

    @property
    def payable_minutes(self) -> int:
        """Payable minutes of a closed session; 0 while open."""
        if self.end is None:
            return 0
        return payable_minutes(self.start, self.end, self.break_minutes, self.rounding)


@dataclass
class Expense:
    """An expense logged against an optional project."""

    amount: Decimal
    category: str
    date: date
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    note: Optional[str] = None
    project_id: Optional[uuid.UUID] = None
    receipt: Optional[bytes] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
